"""Tests for the delimited text connector."""

import pytest

from datalink.connectors.csv_stream import CsvConnector
from datalink.connectors.memory import MemoryConnector
from datalink.connectors.sql import SqlConnector
from datalink.core.errors import AlreadyExistsError, FilterExpressionError, PathError, SpecificationError
from datalink.core.transfer import TransferCoordinator


class TestCsvConnector:
    """Test row operations on CSV tables."""

    @pytest.fixture
    def connector(self, tmp_path):
        return CsvConnector({"root": str(tmp_path)}, name="sheets")

    async def populate(self, connector):
        await connector.create("people.csv", {"headers": "name,age"})
        await connector.write("people.csv", None, {"name": "Ann", "age": 30})
        await connector.write("people.csv", None, [{"name": "bob", "age": 25}])

    @pytest.mark.asyncio
    async def test_create_writes_header(self, connector, tmp_path):
        await connector.create("people.csv", {"headers": ["name", "age"]})

        assert (tmp_path / "people.csv").read_text() == "name,age\n"
        # unset overwrite keeps create idempotent
        await connector.create("people.csv")
        with pytest.raises(AlreadyExistsError):
            await connector.create("people.csv", {"overwrite": False})

    @pytest.mark.asyncio
    async def test_list_rows(self, connector):
        await self.populate(connector)

        rows = await connector.list("people.csv")
        assert rows == [{"name": "Ann", "age": "30"}, {"name": "bob", "age": "25"}]

        by_age = await connector.list("people.csv", {"sort": "age asc", "fields": "name"})
        assert by_age == [{"name": "bob"}, {"name": "Ann"}]

        adults = await connector.list("people.csv", {"filter": "age > 26"})
        assert adults == [{"name": "Ann", "age": "30"}]

    @pytest.mark.asyncio
    async def test_read_single_row(self, connector):
        await self.populate(connector)

        result = await connector.read("people.csv", {"filter": "name = 'ann'"})
        assert result.record == {"name": "Ann", "age": "30"}
        assert result.content == b"name,age\nAnn,30\n"
        assert result.content_type == "text/csv"

        with pytest.raises(PathError):
            await connector.read("people.csv")
        with pytest.raises(PathError):
            await connector.read("people.csv", {"filter": "name = 'zed'"})

    @pytest.mark.asyncio
    async def test_write_unknown_column(self, connector):
        await self.populate(connector)

        with pytest.raises(PathError):
            await connector.write("people.csv", None, {"name": "Cy", "email": "cy@example.com"})

    @pytest.mark.asyncio
    async def test_write_creates_missing_table(self, connector, tmp_path):
        await connector.write("cities.csv", None, {"city": "Oslo", "country": "NO"})

        assert (tmp_path / "cities.csv").read_text() == "city,country\nOslo,NO\n"

    @pytest.mark.asyncio
    async def test_write_into_headerless_table(self, connector, tmp_path):
        await connector.create("people.csv")
        await connector.write("people.csv", None, {"name": "ann"})

        assert (tmp_path / "people.csv").read_text() == "name\nann\n"
        await connector.write("people.csv", None, {"name": "bob"})
        assert await connector.list("people.csv") == [{"name": "ann"}, {"name": "bob"}]

    @pytest.mark.asyncio
    async def test_unknown_column_on_empty_table(self, connector):
        await connector.create("people.csv", {"headers": "name,age"})

        assert await connector.list("people.csv", {"filter": "age > 1"}) == []
        with pytest.raises(FilterExpressionError):
            await connector.list("people.csv", {"filter": "nosuchfield = 1"})

    @pytest.mark.asyncio
    async def test_write_raw_document(self, connector):
        await connector.write("raw.csv", None, b"x,y\n1,2\n")

        assert await connector.list("raw.csv") == [{"x": "1", "y": "2"}]
        with pytest.raises(AlreadyExistsError):
            await connector.write("raw.csv", None, b"x\n")

    @pytest.mark.asyncio
    async def test_exist(self, connector):
        await self.populate(connector)

        assert await connector.exist("people.csv")
        assert await connector.exist("people.csv", {"filter": "name = 'bob'"})
        assert not await connector.exist("people.csv", {"filter": "name = 'zed'"})
        assert not await connector.exist("missing.csv")

    @pytest.mark.asyncio
    async def test_delete_rows_and_purge(self, connector):
        await self.populate(connector)

        assert await connector.delete("people.csv", {"filter": "name = 'bob'"}) == 1
        assert await connector.list("people.csv") == [{"name": "Ann", "age": "30"}]

        assert await connector.delete("people.csv", {"purge": True}) == 1
        assert not await connector.exist("people.csv")

        with pytest.raises(PathError):
            await connector.delete("/", {"purge": True})

    @pytest.mark.asyncio
    async def test_compress(self, connector):
        await self.populate(connector)

        single = await connector.compress("people.csv")
        assert [entry.name for entry in single] == ["people.csv"]
        assert single[0].content == b"name,age\nAnn,30\nbob,25\n"

        separate = await connector.compress("people.csv", {"separatePerRow": True})
        assert [entry.name for entry in separate] == ["people_1.csv", "people_2.csv"]
        assert separate[1].content == b"name,age\nbob,25\n"

    @pytest.mark.asyncio
    async def test_directories(self, connector):
        await self.populate(connector)
        await connector.create("archive/")

        assert await connector.exist("archive/")
        listing = await connector.list("/", {"fields": "path"})
        assert listing == [{"path": "archive/"}, {"path": "people.csv"}]

        with pytest.raises(PathError):
            await connector.delete("archive/")
        assert await connector.delete("archive/", {"purge": True}) == 1

    @pytest.mark.asyncio
    async def test_custom_delimiter(self, tmp_path):
        connector = CsvConnector({"root": str(tmp_path), "Delimiter": ";"})
        await connector.write("semi.csv", None, {"a": "1", "b": "2"})

        assert (tmp_path / "semi.csv").read_text() == "a;b\n1;2\n"
        assert await connector.list("semi.csv") == [{"a": "1", "b": "2"}]

    def test_invalid_delimiter(self, tmp_path):
        with pytest.raises(SpecificationError):
            CsvConnector({"root": str(tmp_path), "delimiter": ";;"})


class TestCsvTransfers:
    """Test moving CSV tables to other connectors."""

    def setup_method(self):
        self.coordinator = TransferCoordinator()

    @pytest.mark.asyncio
    async def test_prepare_builds_tabular_package(self, tmp_path):
        connector = CsvConnector({"root": str(tmp_path)})
        await connector.write("people.csv", None, [{"name": "Ann", "age": 30}, {"name": "bob", "age": 25}])

        package = await connector.prepare_transmission_data("people.csv", {"filter": "age < 28"})

        assert package.columns == ["name", "age"]
        assert package.keys() == ["people_1.csv"]
        assert package.rows[0].items == ["bob", "25"]
        assert package.name == "people.csv"
        assert package.content == b"name,age\nbob,25\n"

    @pytest.mark.asyncio
    async def test_csv_to_sql(self, tmp_path):
        source = CsvConnector({"root": str(tmp_path)})
        await source.write("people.csv", None, [{"name": "Ann", "age": 30}, {"name": "bob", "age": 25}])
        destination = SqlConnector({"url": "sqlite://"}, name="db")

        result = await self.coordinator.transfer(source, "people.csv", destination, "people")

        assert result.succeeded == 2
        assert await destination.list("people", {"sort": "name"}) == [
            {"name": "Ann", "age": "30"},
            {"name": "bob", "age": "25"},
        ]

    @pytest.mark.asyncio
    async def test_csv_to_memory_single_document(self, tmp_path):
        source = CsvConnector({"root": str(tmp_path)})
        await source.write("people.csv", None, [{"name": "Ann", "age": 30}, {"name": "bob", "age": 25}])
        destination = MemoryConnector()

        result = await self.coordinator.transfer(source, "people.csv", destination, "bucket/exports/")

        assert result.succeeded == 1
        read = await destination.read("bucket/exports/people.csv")
        assert read.content == b"name,age\nAnn,30\nbob,25\n"

    @pytest.mark.asyncio
    async def test_csv_to_memory_per_row(self, tmp_path):
        source = CsvConnector({"root": str(tmp_path)})
        await source.write("people.csv", None, [{"name": "Ann", "age": 30}, {"name": "bob", "age": 25}])
        destination = MemoryConnector()

        result = await self.coordinator.transfer(
            source, "people.csv", destination, "bucket/exports/", {"separatePerRow": True}
        )

        assert result.succeeded == 2
        listing = await destination.list("bucket/exports/", {"fields": "name"})
        assert listing == [{"name": "people_1.csv"}, {"name": "people_2.csv"}]
