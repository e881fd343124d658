"""
Warehouse access: the repository contract, the SQLAlchemy-backed repository,
an in-memory variant for tests and local runs, and the ItemFetcher that turns
requested SKUs into raw records.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from item_master.exceptions import ConfigurationError, ErrorContext, WarehouseError
from item_master.logging_config import get_trace_id
from item_master.models import RawSourceItem
from item_master.result import Result

logger = logging.getLogger(__name__)

SKU_QUERY_CHUNK_SIZE = 1000

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")
_SAFE_SKU = re.compile(r"^[A-Za-z0-9\-_./]+$")


class WarehouseRepository(Protocol):
    def fetch_by_skus(self, skus: list[str]) -> Result[list[RawSourceItem]]:
        ...

    def fetch_latest(self, limit: int) -> Result[list[RawSourceItem]]:
        ...


@dataclass
class FetchResult:
    items: list[RawSourceItem] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


def latest_sort_key(item: RawSourceItem) -> tuple:
    """Most recently updated first, undated last, SKU ascending on ties."""
    if item.updated_at_snowflake is None:
        return (1, 0.0, item.sku.upper())
    return (0, -item.updated_at_snowflake.timestamp(), item.sku.upper())


def dedupe_skus(skus: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for sku in skus:
        if sku is None:
            continue
        cleaned = sku.strip()
        if not cleaned or cleaned.upper() in seen:
            continue
        seen.add(cleaned.upper())
        unique.append(cleaned)
    return unique


class WarehouseQueryBuilder:
    """Builds the projection queries for the item master warehouse table."""

    def __init__(self, table: str, schema: Optional[str] = None, database: Optional[str] = None):
        parts = [part for part in (database, schema, table) if part]
        if not table:
            raise ConfigurationError(
                message="Warehouse table is required",
                config_key="WAREHOUSE_TABLE",
            )
        for part in parts:
            if not _IDENTIFIER.match(part):
                raise ConfigurationError(
                    message=f"Invalid warehouse identifier: {part!r}",
                    config_key="WAREHOUSE_TABLE",
                )
        self.qualified_table = ".".join(parts)
        self.projection = ", ".join(RawSourceItem.column_names())

    def select_by_skus(self):
        return text(
            f"SELECT {self.projection} FROM {self.qualified_table} "
            f"WHERE UPPER(SKU) IN :skus"
        ).bindparams(bindparam("skus", expanding=True))

    def select_latest(self):
        return text(
            f"SELECT {self.projection} FROM {self.qualified_table} "
            f"ORDER BY CASE WHEN UPDATED_AT_SNOWFLAKE IS NULL THEN 1 ELSE 0 END, "
            f"UPDATED_AT_SNOWFLAKE DESC, SKU ASC "
            f"LIMIT :limit"
        )

    @staticmethod
    def sanitize_skus(skus: Iterable[str]) -> list[str]:
        """Drop SKUs containing characters a warehouse SKU never has."""
        return [sku for sku in dedupe_skus(skus) if _SAFE_SKU.match(sku)]


class SqlWarehouseRepository:
    """Warehouse repository backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine, query_builder: WarehouseQueryBuilder):
        self.engine = engine
        self.queries = query_builder

    def fetch_by_skus(self, skus: list[str]) -> Result[list[RawSourceItem]]:
        safe = self.queries.sanitize_skus(skus)
        if len(safe) < len(dedupe_skus(skus)):
            logger.warning(
                f"Dropped {len(dedupe_skus(skus)) - len(safe)} SKUs with unsupported characters"
            )
        if not safe:
            return Result.ok([])

        items: list[RawSourceItem] = []
        try:
            with self.engine.connect() as conn:
                for start in range(0, len(safe), SKU_QUERY_CHUNK_SIZE):
                    chunk = [sku.upper() for sku in safe[start:start + SKU_QUERY_CHUNK_SIZE]]
                    rows = conn.execute(self.queries.select_by_skus(), {"skus": chunk})
                    items.extend(self._to_item(row) for row in rows)
        except (SQLAlchemyError, PydanticValidationError) as e:
            return self._failure("fetch_by_skus", e)

        logger.info(
            f"Fetched {len(items)} items for {len(safe)} SKUs",
            extra={"metrics": {"requested": len(safe), "returned": len(items)}},
        )
        return Result.ok(items)

    def fetch_latest(self, limit: int) -> Result[list[RawSourceItem]]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(self.queries.select_latest(), {"limit": int(limit)})
                items = [self._to_item(row) for row in rows]
        except (SQLAlchemyError, PydanticValidationError) as e:
            return self._failure("fetch_latest", e)

        logger.info(f"Fetched {len(items)} latest items (limit {limit})")
        return Result.ok(items)

    @staticmethod
    def _to_item(row) -> RawSourceItem:
        return RawSourceItem.model_validate(
            {str(key).upper(): value for key, value in row._mapping.items()}
        )

    @staticmethod
    def _failure(operation: str, e: Exception) -> Result:
        error = WarehouseError(
            message=f"Warehouse {operation} failed: {e}",
            operation=operation,
            context=ErrorContext(trace_id=get_trace_id()),
            original_exception=e,
        )
        logger.error(error.message, extra={"error": error.to_dict()})
        return Result.fail(error.message, exception=error)


class InMemoryWarehouseRepository:
    """Warehouse repository over a fixed list of records."""

    def __init__(self, items: Iterable[RawSourceItem] = (), failure: Optional[str] = None):
        self.items = list(items)
        self.failure = failure
        self.calls: list[tuple[str, object]] = []

    def fetch_by_skus(self, skus: list[str]) -> Result[list[RawSourceItem]]:
        self.calls.append(("fetch_by_skus", list(skus)))
        if self.failure:
            return Result.fail(self.failure, exception=WarehouseError(self.failure, operation="fetch_by_skus"))
        wanted = {sku.strip().upper() for sku in skus if sku and sku.strip()}
        return Result.ok([item for item in self.items if item.sku.upper() in wanted])

    def fetch_latest(self, limit: int) -> Result[list[RawSourceItem]]:
        self.calls.append(("fetch_latest", limit))
        if self.failure:
            return Result.fail(self.failure, exception=WarehouseError(self.failure, operation="fetch_latest"))
        return Result.ok(sorted(self.items, key=latest_sort_key)[:limit])


class ItemFetcher:
    """Resolves requested SKUs, or the most recently updated items, into raw records."""

    def __init__(self, repository: WarehouseRepository):
        self.repository = repository

    def fetch_by_skus(self, skus: Iterable[str]) -> Result[FetchResult]:
        requested = dedupe_skus(skus)
        if not requested:
            return Result.ok(FetchResult())

        result = self.repository.fetch_by_skus(requested)
        if result.is_failure:
            return Result.fail(result.error, exception=result.exception)

        by_sku: dict[str, RawSourceItem] = {}
        for item in result.value or []:
            by_sku.setdefault(item.sku.strip().upper(), item)

        fetch = FetchResult()
        for sku in requested:
            item = by_sku.get(sku.upper())
            if item is None:
                fetch.not_found.append(sku)
            else:
                fetch.items.append(item)

        if fetch.not_found:
            logger.info(
                f"{len(fetch.not_found)} requested SKUs not found in warehouse",
                extra={"extra_data": {"not_found": fetch.not_found}},
            )
        return Result.ok(fetch)

    def fetch_latest(self, limit: int) -> Result[FetchResult]:
        if limit <= 0:
            return Result.ok(FetchResult())

        result = self.repository.fetch_latest(limit)
        if result.is_failure:
            return Result.fail(result.error, exception=result.exception)

        items = sorted(result.value or [], key=latest_sort_key)[:limit]
        return Result.ok(FetchResult(items=items))
