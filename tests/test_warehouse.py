"""Tests for warehouse access and item fetching."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, text

from item_master.exceptions import ConfigurationError, WarehouseError
from item_master.models import RawSourceItem
from item_master.warehouse import (
    InMemoryWarehouseRepository,
    ItemFetcher,
    SqlWarehouseRepository,
    WarehouseQueryBuilder,
    dedupe_skus,
)

from conftest import make_raw_item


def _dated(sku, day):
    updated = datetime(2024, 6, day, tzinfo=timezone.utc) if day else None
    return make_raw_item(sku=sku, updated_at_snowflake=updated)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'warehouse.db'}")
    columns = ", ".join(RawSourceItem.column_names())
    with engine.begin() as conn:
        conn.execute(text(f"CREATE TABLE item_master ({columns})"))
        rows = [
            {"SKU": "TEST-001", "PRODUCT_TITLE": "One", "UPDATED_AT_SNOWFLAKE": "2024-06-01T00:00:00"},
            {"SKU": "test-002", "PRODUCT_TITLE": "Two", "UPDATED_AT_SNOWFLAKE": "2024-06-03T00:00:00"},
            {"SKU": "TEST-003", "PRODUCT_TITLE": "Three", "UPDATED_AT_SNOWFLAKE": None},
        ]
        for row in rows:
            conn.execute(
                text(
                    "INSERT INTO item_master (SKU, PRODUCT_TITLE, UPDATED_AT_SNOWFLAKE, LANDED_COST) "
                    "VALUES (:SKU, :PRODUCT_TITLE, :UPDATED_AT_SNOWFLAKE, 4.5)"
                ),
                row,
            )
    yield engine
    engine.dispose()


@pytest.fixture
def sql_repository(engine):
    return SqlWarehouseRepository(engine, WarehouseQueryBuilder("item_master"))


class TestDedupeSkus:
    """Tests for SKU de-duplication."""

    def test_case_insensitive_first_wins(self):
        """Test first spelling is kept and blanks dropped."""
        assert dedupe_skus(["a", " A ", "", "b", None]) == ["a", "b"]


class TestQueryBuilder:
    """Tests for warehouse query construction."""

    def test_qualified_table(self):
        """Test database and schema qualify the table."""
        builder = WarehouseQueryBuilder("ITEMS", schema="PUBLIC", database="ANALYTICS")
        assert builder.qualified_table == "ANALYTICS.PUBLIC.ITEMS"

    @pytest.mark.parametrize("table", ["", "items; DROP TABLE x", "1items"])
    def test_rejects_bad_identifiers(self, table):
        """Test unsafe identifiers fail as configuration errors."""
        with pytest.raises(ConfigurationError):
            WarehouseQueryBuilder(table)

    def test_sanitize_skus(self):
        """Test SKUs with unexpected characters are dropped."""
        assert WarehouseQueryBuilder.sanitize_skus(["OK-1", "bad'sku", "A/B.C_1"]) == ["OK-1", "A/B.C_1"]


class TestSqlWarehouseRepository:
    """Tests for the SQLAlchemy repository."""

    def test_fetch_by_skus_case_insensitive(self, sql_repository):
        """Test SKUs match regardless of case."""
        result = sql_repository.fetch_by_skus(["test-001", "TEST-002", "MISSING"])

        assert result.is_success
        assert sorted(item.sku for item in result.value) == ["TEST-001", "test-002"]
        assert all(item.landed_cost == 4.5 for item in result.value)

    def test_nulls_use_defaults(self, sql_repository):
        """Test NULL columns come back as defaults."""
        item = sql_repository.fetch_by_skus(["TEST-003"]).value[0]
        assert item.hts == ""
        assert item.updated_at_snowflake is None

    def test_fetch_latest_order(self, sql_repository):
        """Test latest items are newest first with undated last."""
        result = sql_repository.fetch_latest(10)
        assert [item.sku for item in result.value] == ["test-002", "TEST-001", "TEST-003"]

    def test_fetch_latest_limit(self, sql_repository):
        """Test the limit is applied in the query."""
        assert len(sql_repository.fetch_latest(1).value) == 1

    def test_unsafe_skus_never_queried(self, sql_repository):
        """Test only unsafe SKUs yields an empty result."""
        result = sql_repository.fetch_by_skus(["x' OR '1'='1"])
        assert result.is_success
        assert result.value == []

    def test_query_failure_is_result(self, engine):
        """Test database errors come back as a failed result."""
        repository = SqlWarehouseRepository(engine, WarehouseQueryBuilder("missing_table"))
        result = repository.fetch_by_skus(["TEST-001"])

        assert result.is_failure
        assert isinstance(result.exception, WarehouseError)
        assert result.exception.retryable

    def test_numeric_barcode_read_as_text(self, engine, sql_repository):
        """Test a NUMBER barcode column comes back as a string."""
        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO item_master (SKU, BARCODE, LANDED_COST) VALUES ('A-1', 1234567890123, 2)")
            )

        result = ItemFetcher(sql_repository).fetch_by_skus(["A-1"])

        assert result.is_success
        assert result.value.items[0].barcode == "1234567890123"

    def test_unconvertible_row_is_result(self, engine, sql_repository):
        """Test a row that cannot be read fails the fetch as a result."""
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO item_master (SKU, LANDED_COST) VALUES ('A-2', 'n/a')"))

        by_sku = sql_repository.fetch_by_skus(["A-2"])
        latest = sql_repository.fetch_latest(10)

        assert by_sku.is_failure
        assert isinstance(by_sku.exception, WarehouseError)
        assert "fetch_by_skus" in by_sku.error
        assert latest.is_failure
        assert "fetch_latest" in latest.error


class TestItemFetcher:
    """Tests for ItemFetcher."""

    def test_found_and_not_found_cover_request(self):
        """Test every requested SKU is either found or not found."""
        fetcher = ItemFetcher(InMemoryWarehouseRepository([make_raw_item(sku="A"), make_raw_item(sku="B")]))
        result = fetcher.fetch_by_skus(["b", "X", "A", "a"])

        fetch = result.value
        assert [item.sku for item in fetch.items] == ["B", "A"]
        assert fetch.not_found == ["X"]

    def test_empty_request_skips_repository(self):
        """Test no query is made for an empty request."""
        repository = InMemoryWarehouseRepository([make_raw_item()])
        result = ItemFetcher(repository).fetch_by_skus([" ", ""])

        assert result.value.items == []
        assert repository.calls == []

    def test_latest_order_and_limit(self):
        """Test latest items are sorted and truncated."""
        repository = InMemoryWarehouseRepository(
            [_dated("B", 1), _dated("A", 1), _dated("C", 5), _dated("D", None)]
        )
        result = ItemFetcher(repository).fetch_latest(3)
        assert [item.sku for item in result.value.items] == ["C", "A", "B"]

    def test_latest_non_positive_limit(self):
        """Test a zero limit returns nothing."""
        repository = InMemoryWarehouseRepository([make_raw_item()])
        assert ItemFetcher(repository).fetch_latest(0).value.items == []
        assert repository.calls == []

    def test_failure_propagates(self):
        """Test repository failures are passed through."""
        fetcher = ItemFetcher(InMemoryWarehouseRepository(failure="warehouse down"))
        result = fetcher.fetch_by_skus(["A"])

        assert result.is_failure
        assert result.error == "warehouse down"

    def test_disjoint_requests_union(self):
        """Test fetching A and B together equals fetching them apart."""
        repository = InMemoryWarehouseRepository(
            [make_raw_item(sku=sku) for sku in ("A-1", "A-2", "B-1", "B-2")]
        )
        fetcher = ItemFetcher(repository)
        part_a = ["A-1", "a-2", "MISSING-A"]
        part_b = ["B-2", "MISSING-B"]

        together = fetcher.fetch_by_skus(part_a + part_b).value
        apart = [fetcher.fetch_by_skus(part_a).value, fetcher.fetch_by_skus(part_b).value]

        assert sorted(i.sku for i in together.items) == sorted(i.sku for f in apart for i in f.items)
        assert sorted(together.not_found) == sorted(s for f in apart for s in f.not_found)
