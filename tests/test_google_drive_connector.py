"""Tests for the Google Drive connector with a mocked Drive service."""

import re
from unittest.mock import Mock, patch

import pytest
from googleapiclient.errors import HttpError

from datalink.connectors.google_drive import FOLDER_MIME_TYPE, GoogleDriveConnector
from datalink.core.errors import AlreadyExistsError, BackendUnavailableError, PathError, SpecificationError


def make_request(result=None, error=None):
    """Create a mock API request whose execute() returns ``result`` or raises ``error``."""
    request = Mock()
    if error is not None:
        request.execute.side_effect = error
    else:
        request.execute.return_value = result
    return request


def http_error(status, reason):
    return HttpError(resp=Mock(status=status, reason=reason), content=b"")


def create_mock_drive_files():
    """Create mock Google Drive file data below folder ``folder_123``."""
    return [
        {
            "id": "folder_reports",
            "name": "reports",
            "mimeType": FOLDER_MIME_TYPE,
            "parents": ["folder_123"],
            "createdTime": "2024-01-01T10:00:00.000Z",
            "modifiedTime": "2024-01-01T10:00:00.000Z",
        },
        {
            "id": "file_1",
            "name": "q1.pdf",
            "mimeType": "application/pdf",
            "parents": ["folder_reports"],
            "size": "1024",
            "md5Checksum": "abc123",
            "createdTime": "2024-01-02T15:30:00.000Z",
            "modifiedTime": "2024-01-02T15:30:00.000Z",
        },
        {
            "id": "file_2",
            "name": "notes.txt",
            "mimeType": "text/plain",
            "parents": ["folder_123"],
            "size": "12",
            "createdTime": "2024-01-03T08:15:00.000Z",
            "modifiedTime": "2024-01-04T12:45:00.000Z",
        },
    ]


class FakeFiles:
    """Answers files().list queries from an in-memory file table, one item per page."""

    def __init__(self, files):
        self.files = files

    def list(self, q, pageToken=None, **kwargs):
        parent = re.search(r"'([^']*)' in parents", q).group(1)
        matches = [item for item in self.files if parent in item["parents"]]

        name = re.search(r"name = '([^']*)'", q)
        if name is None:
            index = int(pageToken or 0)
            page = {"files": matches[index:index + 1]}
            if index + 1 < len(matches):
                page["nextPageToken"] = str(index + 1)
            return make_request(page)

        folder = "mimeType = '" in q
        matches = [
            item for item in matches
            if item["name"] == name.group(1) and (item["mimeType"] == FOLDER_MIME_TYPE) == folder
        ]
        return make_request({"files": matches[:1]})


class TestGoogleDriveConnector:
    """Test Google Drive operations against a mocked service."""

    def setup_method(self):
        self.connector = GoogleDriveConnector(
            {"credentials_path": "./secrets/test_credentials.json", "folderId": "folder_123"},
            name="drive"
        )
        self.fake = FakeFiles(create_mock_drive_files())
        self.files = Mock()
        self.files.list.side_effect = self.fake.list
        self.files.create.side_effect = lambda **kwargs: make_request({"id": "created_id"})
        self.files.update.side_effect = lambda **kwargs: make_request({"id": kwargs["fileId"]})
        self.files.delete.side_effect = lambda **kwargs: make_request("")
        self.files.get_media.side_effect = lambda fileId: make_request(b"%PDF-1.4")

        self.connector.service = Mock()
        self.connector.service.files.return_value = self.files
        self.connector._initialized = True

    def test_requires_credentials_path(self):
        with pytest.raises(SpecificationError) as exc_info:
            GoogleDriveConnector({"folder_id": "folder_123"})
        assert "credentials_path" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_authentication_missing_file(self):
        connector = GoogleDriveConnector({"credentials_path": "/nonexistent/credentials.json"})

        with pytest.raises(BackendUnavailableError):
            await connector.initialize()
        assert connector.service is None

    @pytest.mark.asyncio
    async def test_authentication_success(self):
        connector = GoogleDriveConnector({"credentials_path": "./secrets/test_credentials.json"})

        with patch("os.path.exists", return_value=True), \
             patch("datalink.connectors.google_drive.service_account") as mock_sa, \
             patch("datalink.connectors.google_drive.build") as mock_build:
            mock_credentials = Mock()
            mock_sa.Credentials.from_service_account_file.return_value = mock_credentials
            mock_build.return_value = Mock()

            await connector.initialize()

        mock_build.assert_called_once_with("drive", "v3", credentials=mock_credentials, cache_discovery=False)
        assert connector.service is mock_build.return_value
        assert connector.get_info()["initialized"]

    @pytest.mark.asyncio
    async def test_list_recursive(self):
        rows = await self.connector.list("/", {"recurse": True, "full": True, "fields": "path,size,kind"})

        assert rows == [
            {"path": "notes.txt", "size": 12, "kind": "file"},
            {"path": "reports/", "size": 0, "kind": "directory"},
            {"path": "reports/q1.pdf", "size": 1024, "kind": "file"},
        ]

    @pytest.mark.asyncio
    async def test_list_missing_folder(self):
        with pytest.raises(PathError):
            await self.connector.list("archive/")

    @pytest.mark.asyncio
    async def test_exist_is_strict(self):
        assert await self.connector.exist("/")
        assert await self.connector.exist("reports/")
        assert await self.connector.exist("reports/q1.pdf")
        assert not await self.connector.exist("reports")
        assert not await self.connector.exist("reports/q2.pdf")

    @pytest.mark.asyncio
    async def test_read(self):
        result = await self.connector.read("reports/q1.pdf")

        assert result.content == b"%PDF-1.4"
        assert result.content_type == "application/pdf"
        assert result.md5 == "abc123"
        self.files.get_media.assert_called_once_with(fileId="file_1")

    @pytest.mark.asyncio
    async def test_read_http_errors(self):
        self.files.get_media.side_effect = lambda fileId: make_request(error=http_error(404, "Not Found"))
        with pytest.raises(PathError):
            await self.connector.read("reports/q1.pdf")

        self.files.get_media.side_effect = lambda fileId: make_request(error=http_error(500, "Backend Error"))
        with pytest.raises(BackendUnavailableError):
            await self.connector.read("reports/q1.pdf")

    @pytest.mark.asyncio
    async def test_write_new_file(self):
        await self.connector.write("reports/new.txt", None, b"hello")

        kwargs = self.files.create.call_args.kwargs
        assert kwargs["body"] == {"name": "new.txt", "parents": ["folder_reports"]}
        self.files.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_existing_file(self):
        with pytest.raises(AlreadyExistsError):
            await self.connector.write("notes.txt", None, b"hello")

        await self.connector.write("notes.txt", {"overwrite": True}, b"hello")
        assert self.files.update.call_args.kwargs["fileId"] == "file_2"

    @pytest.mark.asyncio
    async def test_write_missing_parent(self):
        with pytest.raises(PathError):
            await self.connector.write("archive/old.txt", None, b"x")

    @pytest.mark.asyncio
    async def test_create_folders(self):
        await self.connector.create("reports/2024/")

        self.files.create.assert_called_once()
        body = self.files.create.call_args.kwargs["body"]
        assert body == {"name": "2024", "mimeType": FOLDER_MIME_TYPE, "parents": ["folder_reports"]}

        await self.connector.create("reports/")
        with pytest.raises(AlreadyExistsError):
            await self.connector.create("reports/", {"overwrite": False})

    @pytest.mark.asyncio
    async def test_delete(self):
        assert await self.connector.delete("reports/q1.pdf") == 1
        self.files.delete.assert_called_once_with(fileId="file_1", supportsAllDrives=True)

        with pytest.raises(PathError):
            await self.connector.delete("/")
        with pytest.raises(PathError):
            await self.connector.delete("reports/missing.pdf")

    @pytest.mark.asyncio
    async def test_delete_matched_files(self):
        removed = await self.connector.delete("reports/", {"filter": "kind = 'file'"})
        assert removed == 1
        self.files.delete.assert_called_with(fileId="file_1", supportsAllDrives=True)

    @pytest.mark.asyncio
    async def test_about(self):
        self.connector.service.about.return_value.get.return_value = make_request(
            {"storageQuota": {"limit": "1000", "usage": "250"}}
        )

        usage = await self.connector.about()

        assert (usage.total, usage.used, usage.free) == (1000, 250, 750)
