"""Google Drive connector."""

import asyncio
import io
import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import google.auth.exceptions
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from ..config.settings import get_settings
from ..core import paths
from ..core.cancellation import CancellationToken, check_cancelled
from ..core.entities import EntityKind, ReadResult, StorageEntity, StorageUsage, guess_content_type, md5_hex
from ..core.errors import AlreadyExistsError, BackendUnavailableError, PathError
from ..core.options import CreateOptions, DeleteOptions, OptionsInput, QueryOptions, WriteOptions
from ..utils.logging import log_async_execution_time
from .base import ConnectorSpecifications, StorageConnector

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id, name, mimeType, size, md5Checksum, createdTime, modifiedTime, parents"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveSpecifications(ConnectorSpecifications):
    credentials_path: str
    folder_id: str = "root"
    include_shared: bool = True


class GoogleDriveConnector(StorageConnector):
    """Google Drive folder exposed as a file tree.

    The root path maps to the configured folder. Paths are resolved segment
    by segment to Drive file ids; Drive allows duplicate names, in which case
    the first match wins.
    """

    type_id = "google_drive"
    description = "Google Drive folder"
    Specifications = GoogleDriveSpecifications

    def __init__(self, specifications=None, name: Optional[str] = None):
        super().__init__(specifications, name)
        self.service = None
        self.credentials = None
        self.scopes = ["https://www.googleapis.com/auth/drive"]
        self.api_version = "v3"

    @property
    def folder_id(self) -> str:
        return self.specifications.folder_id

    @log_async_execution_time
    async def _connect(self) -> None:
        """Authenticate with a service account and build the Drive service."""
        credentials_path = self.specifications.credentials_path
        try:
            if not os.path.exists(credentials_path):
                raise FileNotFoundError(credentials_path)

            self.credentials = service_account.Credentials.from_service_account_file(
                credentials_path,
                scopes=self.scopes
            )
            self.service = build("drive", self.api_version, credentials=self.credentials, cache_discovery=False)
            self.logger.info("Google Drive authentication successful", folder_id=self.folder_id)

        except FileNotFoundError:
            error_msg = f"Credentials file not found: {credentials_path}"
            self.logger.error("Google Drive authentication failed", error=error_msg)
            raise BackendUnavailableError(error_msg)

        except json.JSONDecodeError as e:
            error_msg = f"Invalid credentials file format: {e}"
            self.logger.error("Google Drive authentication failed", error=error_msg)
            raise BackendUnavailableError(error_msg)

        except (google.auth.exceptions.GoogleAuthError, ValueError) as e:
            error_msg = f"Invalid credentials: {e}"
            self.logger.error("Google Drive authentication failed", error=error_msg)
            raise BackendUnavailableError(error_msg)

    def _execute_request(self, request):
        """Execute Google API request (to be run in thread pool)."""
        return request.execute()

    async def _call(self, request, path: Optional[str] = None):
        try:
            return await asyncio.get_event_loop().run_in_executor(None, self._execute_request, request)
        except HttpError as e:
            status = e.resp.status
            if status == 404:
                raise PathError("Entity not found", path=path)
            if status == 429:
                retry_after = e.resp.get("retry-after", "60")
                raise BackendUnavailableError(
                    f"Google Drive rate limit exceeded, retry after {retry_after}s", path=path
                )
            raise BackendUnavailableError(f"Google Drive API error: {e}", path=path)

    def _parse_timestamp(self, timestamp_str: Optional[str]) -> Optional[datetime]:
        """Parse Google Drive timestamp string to datetime object."""
        if not timestamp_str:
            return None

        try:
            return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            self.logger.warning("Failed to parse timestamp", timestamp=timestamp_str)
            return None

    def _entity(self, parent_path: str, file_data: Dict[str, Any]) -> StorageEntity:
        full_path = paths.combine(parent_path, file_data["name"])
        created = self._parse_timestamp(file_data.get("createdTime"))
        modified = self._parse_timestamp(file_data.get("modifiedTime"))

        if file_data.get("mimeType") == FOLDER_MIME_TYPE:
            return StorageEntity(
                full_path=paths.as_directory(full_path),
                kind=EntityKind.DIRECTORY,
                id=file_data["id"],
                created_time=created,
                modified_time=modified,
            )

        # Google Workspace documents have no size
        size = None
        if "size" in file_data:
            try:
                size = int(file_data["size"])
            except (ValueError, TypeError):
                pass

        return StorageEntity(
            full_path=full_path,
            kind=EntityKind.FILE,
            id=file_data["id"],
            size=size,
            md5=file_data.get("md5Checksum"),
            created_time=created,
            modified_time=modified,
            content_type=file_data.get("mimeType"),
        )

    async def _find_child(
        self,
        parent_id: str,
        child_name: str,
        folder: bool,
        path: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        comparison = "=" if folder else "!="
        query = (
            f"'{_escape(parent_id)}' in parents and name = '{_escape(child_name)}' "
            f"and mimeType {comparison} '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        request = self.service.files().list(
            q=query,
            fields=f"files({FILE_FIELDS})",
            pageSize=1,
            includeItemsFromAllDrives=self.specifications.include_shared,
            supportsAllDrives=self.specifications.include_shared
        )
        result = await self._call(request, path)
        files = result.get("files", [])
        return files[0] if files else None

    async def _resolve(self, path: str) -> Optional[Dict[str, Any]]:
        """Walk ``path`` from the configured folder; None when any segment is missing."""
        canonical = paths.normalize(path)
        current: Optional[Dict[str, Any]] = {"id": self.folder_id, "name": "", "mimeType": FOLDER_MIME_TYPE}
        if not canonical:
            return current

        segments = canonical.rstrip(paths.SEPARATOR).split(paths.SEPARATOR)
        for index, segment in enumerate(segments):
            last = index == len(segments) - 1
            folder = not last or paths.is_directory(canonical)
            current = await self._find_child(current["id"], segment, folder, canonical)
            if current is None:
                return None
        return current

    async def _list_children(self, folder_id: str, path: str) -> List[Dict[str, Any]]:
        children = []
        page_token = None
        while True:
            request = self.service.files().list(
                q=f"'{_escape(folder_id)}' in parents and trashed = false",
                fields=f"nextPageToken, files({FILE_FIELDS})",
                pageSize=get_settings().google_drive.page_size,
                pageToken=page_token,
                includeItemsFromAllDrives=self.specifications.include_shared,
                supportsAllDrives=self.specifications.include_shared
            )
            result = await self._call(request, path)
            children.extend(result.get("files", []))
            page_token = result.get("nextPageToken")
            self.logger.debug("Retrieved Google Drive files page", path=path, has_next_page=bool(page_token))
            if not page_token:
                return children

    async def about(self, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> StorageUsage:
        await self._ensure_initialized()
        about = await self._call(self.service.about().get(fields="storageQuota"))
        quota = about.get("storageQuota", {})
        total = int(quota.get("limit") or 0)
        used = int(quota.get("usage") or 0)
        return StorageUsage(total=total, free=max(total - used, 0) if total else 0, used=used)

    async def create(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> None:
        create_options = CreateOptions.from_options(options)
        canonical = self._require_directory(path, "Create")
        if paths.is_root(canonical):
            raise PathError("Cannot create the root path", path="/")
        await self._ensure_initialized()

        parent_id = self.folder_id
        segments = canonical.rstrip(paths.SEPARATOR).split(paths.SEPARATOR)
        created = False
        for segment in segments:
            check_cancelled(cancel, canonical)
            folder = await self._find_child(parent_id, segment, True, canonical)
            if folder is None:
                request = self.service.files().create(
                    body={"name": segment, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
                    fields="id, name, mimeType",
                    supportsAllDrives=self.specifications.include_shared
                )
                folder = await self._call(request, canonical)
                created = True
            parent_id = folder["id"]

        if not created:
            if create_options.overwrite is False:
                raise AlreadyExistsError("Directory already exists", path=canonical)
            return
        self.logger.info("Created directory", path=canonical)

    async def write(
        self,
        path: str,
        options: OptionsInput,
        payload: Any,
        cancel: Optional[CancellationToken] = None
    ) -> None:
        canonical = self._require_file(path, "Write")
        write_options = WriteOptions.from_options(options)
        content = self._payload_bytes(payload, canonical)
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        parent = await self._resolve(paths.parent(canonical))
        if parent is None:
            raise PathError("Parent directory does not exist", path=paths.parent(canonical))

        entry_name = paths.name(canonical)
        existing = await self._find_child(parent["id"], entry_name, False, canonical)
        if existing is not None and not write_options.overwrite:
            raise AlreadyExistsError("File already exists", path=canonical)

        media = MediaIoBaseUpload(
            io.BytesIO(content),
            mimetype=guess_content_type(canonical) or "application/octet-stream",
            resumable=False
        )
        if existing is not None:
            request = self.service.files().update(
                fileId=existing["id"],
                media_body=media,
                supportsAllDrives=self.specifications.include_shared
            )
        else:
            request = self.service.files().create(
                body={"name": entry_name, "parents": [parent["id"]]},
                media_body=media,
                fields="id",
                supportsAllDrives=self.specifications.include_shared
            )
        await self._call(request, canonical)
        self.logger.debug("Wrote file", path=canonical, size=len(content))

    async def read(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> ReadResult:
        canonical = self._require_file(path, "Read")
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        file_data = await self._resolve(canonical)
        if file_data is None:
            raise PathError("File does not exist", path=canonical)

        content = await self._call(self.service.files().get_media(fileId=file_data["id"]), canonical)
        return ReadResult(
            content=content,
            content_type=file_data.get("mimeType") or guess_content_type(canonical),
            extension=paths.extension(canonical),
            md5=file_data.get("md5Checksum") or md5_hex(content),
        )

    async def _delete_id(self, file_id: str, path: str):
        request = self.service.files().delete(fileId=file_id, supportsAllDrives=self.specifications.include_shared)
        await self._call(request, path)

    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        canonical = paths.normalize(path)
        self._guard_root_delete(canonical)
        delete_options = DeleteOptions.from_options(options)
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        target = await self._resolve(canonical)
        if target is None:
            raise PathError("Path does not exist", path=canonical)

        if paths.is_file(canonical) or delete_options.purge:
            # Drive removes the children of a deleted folder
            await self._delete_id(target["id"], canonical)
            self.logger.info("Deleted entity", path=canonical, purge=delete_options.purge)
            return 1

        matched = await self.list_entities(canonical, QueryOptions.from_options(options), cancel)
        removed = 0
        for entity in matched:
            if entity.is_file:
                check_cancelled(cancel, entity.full_path)
                await self._delete_id(entity.id, entity.full_path)
                removed += 1

        self.logger.info("Deleted files", path=canonical, files=removed)
        return removed

    async def exist(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> bool:
        canonical = paths.normalize(path)
        if paths.is_root(canonical):
            return True
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()
        return await self._resolve(canonical) is not None

    async def _list_directory(
        self,
        path: str,
        recurse: bool,
        cancel: Optional[CancellationToken] = None
    ) -> List[StorageEntity]:
        await self._ensure_initialized()
        folder = await self._resolve(path)
        if folder is None:
            raise PathError("Directory does not exist", path=path)

        entities = []
        pending = [(folder["id"], path)]
        while pending:
            folder_id, folder_path = pending.pop()
            check_cancelled(cancel, folder_path)
            for file_data in await self._list_children(folder_id, folder_path):
                entity = self._entity(folder_path, file_data)
                entities.append(entity)
                if recurse and entity.is_directory:
                    pending.append((entity.id, entity.full_path))

        self.logger.debug("Listed Google Drive folder", path=path, entities=len(entities))
        return entities
