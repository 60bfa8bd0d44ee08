"""Tests for the in-memory connector."""

import asyncio

import pytest

from datalink.connectors.memory import MemoryConnector, MemoryStore
from datalink.core.cancellation import CancellationToken
from datalink.core.errors import (
    AlreadyExistsError,
    NotSupportedError,
    OperationCancelledError,
    PathError,
)


class TestMemoryConnector:
    """Test the full operation set of the memory connector."""

    def setup_method(self):
        self.connector = MemoryConnector()

    async def populate(self):
        await self.connector.create("bucket/docs/")
        await self.connector.write("bucket/docs/a.txt", None, b"alpha")
        await self.connector.write("bucket/docs/b.txt", None, "beta")

    @pytest.mark.asyncio
    async def test_write_and_read(self):
        await self.populate()

        result = await self.connector.read("bucket/docs/a.txt")
        assert result.content == b"alpha"
        assert result.content_type == "text/plain"
        assert result.extension == ".txt"
        assert result.size == 5

    @pytest.mark.asyncio
    async def test_write_requires_overwrite(self):
        await self.populate()

        with pytest.raises(AlreadyExistsError):
            await self.connector.write("bucket/docs/a.txt", {"overwrite": False}, b"again")

        await self.connector.write("bucket/docs/a.txt", {"overwrite": True}, b"again")
        assert (await self.connector.read("bucket/docs/a.txt")).content == b"again"

    @pytest.mark.asyncio
    async def test_write_into_missing_bucket(self):
        with pytest.raises(PathError):
            await self.connector.write("nowhere/a.txt", None, b"x")

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self):
        await self.connector.create("bucket/docs/")
        await self.connector.create("bucket/docs/")

        with pytest.raises(AlreadyExistsError):
            await self.connector.create("bucket/docs/", {"overwrite": False})

    @pytest.mark.asyncio
    async def test_create_requires_directory_path(self):
        with pytest.raises(PathError):
            await self.connector.create("bucket/file.txt")
        with pytest.raises(PathError):
            await self.connector.create("/")

    @pytest.mark.asyncio
    async def test_list_one_level(self):
        await self.populate()
        await self.connector.create("bucket/docs/nested/")
        await self.connector.write("bucket/docs/nested/c.txt", None, b"c")

        rows = await self.connector.list("bucket/docs/")
        assert [row["path"] for row in rows] == ["bucket/docs/a.txt", "bucket/docs/b.txt", "bucket/docs/nested/"]
        assert "metadata" not in rows[0]

    @pytest.mark.asyncio
    async def test_list_all_containers(self):
        await self.populate()
        await self.connector.create("other/")

        top = await self.connector.list("")
        assert [row["path"] for row in top] == ["bucket/", "other/"]

        everything = await self.connector.list("/", {"recurse": True})
        assert [row["path"] for row in everything] == [
            "bucket/",
            "bucket/docs/",
            "bucket/docs/a.txt",
            "bucket/docs/b.txt",
            "other/",
        ]

    @pytest.mark.asyncio
    async def test_list_is_deterministic(self):
        await self.populate()
        options = {"recurse": True, "sort": "size:desc"}
        assert await self.connector.list("", options) == await self.connector.list("", options)

    @pytest.mark.asyncio
    async def test_list_filters_and_projects(self):
        await self.populate()

        rows = await self.connector.list("bucket/docs/", {"filter": "name = 'A.TXT'", "fields": "name,size", "full": True})
        assert rows == [{"name": "a.txt", "size": 5}]

    @pytest.mark.asyncio
    async def test_list_errors(self):
        await self.populate()

        with pytest.raises(PathError):
            await self.connector.list("bucket/missing/")
        with pytest.raises(PathError):
            await self.connector.list("bucket/docs/a.txt")

    @pytest.mark.asyncio
    async def test_existence_is_not_inferred(self):
        await self.connector.create("bucket/")
        await self.connector.write("bucket/dir/file.txt", None, b"x")

        assert await self.connector.exist("bucket/dir/file.txt")
        assert not await self.connector.exist("bucket/dir/")
        assert not await self.connector.exist("bucket/dir/file.txt/")

        await self.connector.create("bucket/dir/")
        assert await self.connector.exist("/bucket/dir/")

    @pytest.mark.asyncio
    async def test_delete_files_keeps_directory(self):
        await self.populate()

        removed = await self.connector.delete("bucket/docs/")
        assert removed == 2
        assert await self.connector.exist("bucket/docs/")
        assert await self.connector.list("bucket/docs/") == []

    @pytest.mark.asyncio
    async def test_delete_with_purge(self):
        await self.populate()

        await self.connector.delete("bucket/docs/", {"purge": True})
        assert not await self.connector.exist("bucket/docs/")
        assert not await self.connector.exist("bucket/docs/a.txt")

        await self.connector.delete("bucket/", {"purge": True})
        assert not await self.connector.exist("bucket/")

    @pytest.mark.asyncio
    async def test_delete_root_refused(self):
        await self.populate()

        with pytest.raises(PathError):
            await self.connector.delete("", {"purge": True})
        with pytest.raises(PathError):
            await self.connector.delete("/")
        assert await self.connector.exist("bucket/docs/a.txt")

    @pytest.mark.asyncio
    async def test_delete_single_file(self):
        await self.populate()

        assert await self.connector.delete("bucket/docs/a.txt") == 1
        with pytest.raises(PathError):
            await self.connector.delete("bucket/docs/a.txt")

    @pytest.mark.asyncio
    async def test_about_reports_used_bytes(self):
        await self.populate()

        usage = await self.connector.about()
        assert usage.used == 9
        assert usage.total == 0

    @pytest.mark.asyncio
    async def test_compress(self):
        await self.populate()

        entries = await self.connector.compress("bucket/docs/")
        assert [(entry.name, entry.content) for entry in entries] == [("a.txt", b"alpha"), ("b.txt", b"beta")]

    @pytest.mark.asyncio
    async def test_update_not_supported(self):
        with pytest.raises(NotSupportedError):
            await self.connector.update("bucket/a.txt", None, b"x")

    @pytest.mark.asyncio
    async def test_cancelled_read(self):
        await self.populate()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            await self.connector.read("bucket/docs/a.txt", cancel=token)

    @pytest.mark.asyncio
    async def test_shared_store(self):
        store = MemoryStore()
        first = MemoryConnector(name="first", store=store)
        second = MemoryConnector(name="second", store=store)

        await first.create("bucket/")
        await first.write("bucket/a.txt", None, b"shared")

        assert (await second.read("bucket/a.txt")).content == b"shared"
        assert not await self.connector.exist("bucket/")


class TestMemoryStore:
    """Test the readers/writer locking of the shared store."""

    def setup_method(self):
        self.store = MemoryStore()
        self.events = []

    async def hold_read(self, entered: asyncio.Event, release: asyncio.Event):
        async with self.store.reading():
            self.events.append("r-in")
            entered.set()
            await release.wait()
            self.events.append("r-out")

    async def write(self):
        async with self.store.writing():
            self.events.append("w")

    async def assert_writer_waits_for_reader(self):
        entered, release = asyncio.Event(), asyncio.Event()
        reader = asyncio.create_task(self.hold_read(entered, release))
        await entered.wait()

        writer = asyncio.create_task(self.write())
        await asyncio.sleep(0.01)
        assert self.events == ["r-in"]

        release.set()
        await asyncio.gather(reader, writer)
        assert self.events == ["r-in", "r-out", "w"]

    @pytest.mark.asyncio
    async def test_readers_share_the_store(self):
        release = asyncio.Event()
        first, second = asyncio.Event(), asyncio.Event()
        readers = [
            asyncio.create_task(self.hold_read(first, release)),
            asyncio.create_task(self.hold_read(second, release)),
        ]
        await asyncio.wait_for(asyncio.gather(first.wait(), second.wait()), timeout=1)

        release.set()
        await asyncio.gather(*readers)
        assert self.events == ["r-in", "r-in", "r-out", "r-out"]

    @pytest.mark.asyncio
    async def test_writer_waits_for_reader(self):
        await self.assert_writer_waits_for_reader()

    @pytest.mark.asyncio
    async def test_cancelled_reader_keeps_writers_exclusive(self):
        async with self.store.writing():
            blocked = asyncio.create_task(self.hold_read(asyncio.Event(), asyncio.Event()))
            await asyncio.sleep(0.01)
            blocked.cancel()
            with pytest.raises(asyncio.CancelledError):
                await blocked

        assert self.events == []
        await self.assert_writer_waits_for_reader()
