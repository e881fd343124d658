"""
Audit log of every SKU processed: the raw snapshot, the validation outcome,
the canonical snapshot and whether the item reached the queue.

Rows are append-only apart from the delivered flag, which only ever moves
from false to true and only on the latest row for a SKU.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from item_master.clock import Clock, SystemClock
from item_master.exceptions import AuditStoreError, ErrorContext
from item_master.logging_config import get_trace_id
from item_master.mapper import MappingOutcome
from item_master.models import (
    VALIDATION_STATUS_INVALID,
    VALIDATION_STATUS_VALID,
    AuditRecord,
    RawSourceItem,
)
from item_master.result import Result

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ItemMasterSourceLog(Base):
    __tablename__ = "item_master_source_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    source_model: Mapped[str] = mapped_column(Text, nullable=False)
    validation_status: Mapped[str] = mapped_column(String(20), nullable=False)
    common_model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    errors: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_sent_to_sqs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def to_record(self) -> AuditRecord:
        return AuditRecord(
            sku=self.sku,
            source_model=self.source_model,
            validation_status=self.validation_status,
            common_model=self.common_model,
            errors=self.errors,
            delivered_to_queue=self.is_sent_to_sqs,
            created_at=self.created_at,
            trace_id=self.trace_id,
        )


class AuditStore(Protocol):
    def append(self, record: AuditRecord) -> Result:
        ...

    def mark_delivered(self, skus: Iterable[str]) -> Result[int]:
        ...


def _unique_upper(skus: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for sku in skus:
        if sku and sku.strip() and sku.strip().upper() not in seen:
            seen.append(sku.strip().upper())
    return seen


class SqlAuditStore:
    """Audit store persisted through SQLAlchemy."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(
            bind=engine, class_=Session, autoflush=False, expire_on_commit=False
        )

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def append(self, record: AuditRecord) -> Result:
        row = ItemMasterSourceLog(
            sku=record.sku,
            source_model=record.source_model,
            validation_status=record.validation_status,
            common_model=record.common_model,
            errors=record.errors,
            is_sent_to_sqs=record.delivered_to_queue,
            created_at=record.created_at,
            trace_id=record.trace_id,
        )
        try:
            with self.session_factory() as session:
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            return self._failure("append", e, sku=record.sku)
        return Result.ok()

    def mark_delivered(self, skus: Iterable[str]) -> Result[int]:
        """Flip the delivered flag on the latest row of each SKU. Idempotent."""
        updated = 0
        try:
            with self.session_factory() as session:
                for sku in _unique_upper(skus):
                    latest = session.scalars(
                        select(ItemMasterSourceLog)
                        .where(func.upper(ItemMasterSourceLog.sku) == sku)
                        .order_by(ItemMasterSourceLog.created_at.desc(), ItemMasterSourceLog.id.desc())
                        .limit(1)
                    ).first()
                    if latest is not None and not latest.is_sent_to_sqs:
                        latest.is_sent_to_sqs = True
                        updated += 1
                session.commit()
        except SQLAlchemyError as e:
            return self._failure("mark_delivered", e)
        return Result.ok(updated)

    def records_for(self, sku: str) -> list[AuditRecord]:
        """All rows for a SKU, oldest first."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(ItemMasterSourceLog)
                .where(func.upper(ItemMasterSourceLog.sku) == sku.strip().upper())
                .order_by(ItemMasterSourceLog.created_at, ItemMasterSourceLog.id)
            ).all()
            return [row.to_record() for row in rows]

    @staticmethod
    def _failure(operation: str, e: Exception, sku: Optional[str] = None) -> Result:
        error = AuditStoreError(
            message=f"Audit store {operation} failed: {e}",
            operation=operation,
            context=ErrorContext(trace_id=get_trace_id(), sku=sku),
            original_exception=e,
        )
        logger.error(error.message, extra={"error": error.to_dict()})
        return Result.fail(error.message, exception=error)


class InMemoryAuditStore:
    """Audit store kept in a list, for tests and local runs."""

    def __init__(self, fail_appends: bool = False, fail_marks: bool = False):
        self.records: list[AuditRecord] = []
        self.fail_appends = fail_appends
        self.fail_marks = fail_marks

    def append(self, record: AuditRecord) -> Result:
        if self.fail_appends:
            return Result.fail("Audit store unavailable", exception=AuditStoreError("Audit store unavailable"))
        self.records.append(record)
        return Result.ok()

    def mark_delivered(self, skus: Iterable[str]) -> Result[int]:
        if self.fail_marks:
            return Result.fail(
                "Audit store unavailable",
                exception=AuditStoreError("Audit store unavailable", operation="mark_delivered"),
            )
        updated = 0
        for sku in _unique_upper(skus):
            latest_index = self._latest_index(sku)
            if latest_index is None:
                continue
            latest = self.records[latest_index]
            if not latest.delivered_to_queue:
                self.records[latest_index] = latest.model_copy(update={"delivered_to_queue": True})
                updated += 1
        return Result.ok(updated)

    def records_for(self, sku: str) -> list[AuditRecord]:
        return [r for r in self.records if r.sku.upper() == sku.strip().upper()]

    def latest(self, sku: str) -> Optional[AuditRecord]:
        index = self._latest_index(sku.strip().upper())
        return None if index is None else self.records[index]

    def _latest_index(self, upper_sku: str) -> Optional[int]:
        candidates = [
            (record.created_at, index)
            for index, record in enumerate(self.records)
            if record.sku.upper() == upper_sku
        ]
        if not candidates:
            return None
        return max(candidates)[1]


class AuditLogger:
    """Writes one audit row per processed SKU; write failures never abort processing."""

    def __init__(self, store: AuditStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def build_record(self, raw: RawSourceItem, outcome: MappingOutcome, trace_id: Optional[str] = None) -> AuditRecord:
        if outcome.is_success:
            errors = None
            if outcome.skipped_fields:
                errors = f"Skipped optional properties: {', '.join(outcome.skipped_fields)}"
            return AuditRecord(
                sku=outcome.sku,
                source_model=raw.to_snapshot(),
                validation_status=VALIDATION_STATUS_VALID,
                common_model=outcome.item.to_message_body(),
                errors=errors,
                created_at=self.clock.now(),
                trace_id=trace_id,
            )

        return AuditRecord(
            sku=outcome.sku,
            source_model=raw.to_snapshot(),
            validation_status=VALIDATION_STATUS_INVALID,
            common_model=None,
            errors="; ".join(outcome.errors),
            created_at=self.clock.now(),
            trace_id=trace_id,
        )

    def log_outcome(self, raw: RawSourceItem, outcome: MappingOutcome, trace_id: Optional[str] = None) -> bool:
        """Append the audit row; returns False when the write failed."""
        trace_id = trace_id or get_trace_id() or None
        try:
            record = self.build_record(raw, outcome, trace_id)
            result = self.store.append(record)
        except Exception as e:
            logger.error(
                f"Failed to write audit record for {outcome.sku}: {e}",
                extra={"sku": outcome.sku},
                exc_info=True,
            )
            return False

        if result.is_failure:
            logger.error(
                f"Failed to write audit record for {outcome.sku}: {result.error}",
                extra={"sku": outcome.sku},
            )
            return False
        return True

    def mark_delivered(self, skus: list[str]) -> Result[int]:
        if not skus:
            return Result.ok(0)
        try:
            result = self.store.mark_delivered(skus)
        except Exception as e:
            logger.error(f"Failed to mark {len(skus)} SKUs as delivered: {e}", exc_info=True)
            return Result.fail(str(e), exception=e)

        if result.is_failure:
            logger.error(f"Failed to mark {len(skus)} SKUs as delivered: {result.error}")
        else:
            logger.info(
                f"Marked {result.value} audit records as delivered",
                extra={"metrics": {"requested": len(skus), "updated": result.value}},
            )
        return result
