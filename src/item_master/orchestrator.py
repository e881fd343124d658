"""
End-to-end SKU processing: fetch, map, audit, publish, mark delivered.
"""

import logging
from typing import Optional

from item_master.audit import AuditLogger
from item_master.clock import Deadline
from item_master.exceptions import ErrorContext, NotFoundError
from item_master.logging_config import get_trace_id, log_execution_time
from item_master.mapper import MappingOutcome, UnifiedItemMapper
from item_master.models import (
    ProcessingResponse,
    ProcessSkusRequest,
    PublishedItemDetail,
    SkippedItemDetail,
)
from item_master.publisher import ResilientPublisher
from item_master.result import Result
from item_master.warehouse import FetchResult, ItemFetcher

logger = logging.getLogger(__name__)

DEFAULT_LATEST_ITEMS_LIMIT = 100
VALIDATION_FAILED_REASON = "Validation failed"


class ProcessingOrchestrator:
    """Runs one invocation's worth of SKU processing and builds the response."""

    def __init__(
        self,
        fetcher: ItemFetcher,
        mapper: UnifiedItemMapper,
        audit_logger: AuditLogger,
        publisher: ResilientPublisher,
        latest_items_limit: int = DEFAULT_LATEST_ITEMS_LIMIT,
    ):
        self.fetcher = fetcher
        self.mapper = mapper
        self.audit_logger = audit_logger
        self.publisher = publisher
        self.latest_items_limit = latest_items_limit

    @log_execution_time(logger)
    def process(
        self,
        request: ProcessSkusRequest,
        deadline: Optional[Deadline] = None,
    ) -> Result[ProcessingResponse]:
        deadline = deadline or Deadline.none()
        trace_id = get_trace_id() or None
        requested = request.get_all_skus()

        logger.info(
            f"Processing SKUs request | Count: {len(requested)}",
            extra={"extra_data": {"requested_skus": requested[:50]}},
        )

        fetched = self._fetch(requested)
        if fetched.is_failure:
            logger.error(f"Fetch failed, aborting invocation: {fetched.error}")
            return Result.fail(f"Failed to fetch items: {fetched.error}", exception=fetched.exception)
        fetch: FetchResult = fetched.value
        if fetch.not_found:
            missing = NotFoundError(
                f"{len(fetch.not_found)} requested SKUs have no warehouse record",
                skus=list(fetch.not_found),
                context=ErrorContext(trace_id=trace_id),
            )
            logger.warning(f"SKUS_NOT_FOUND | Count: {len(fetch.not_found)}", extra={"error": missing.to_dict()})

        response = ProcessingResponse(
            items_processed=len(fetch.items),
            skus_not_found=list(fetch.not_found),
        )

        mapped = self.mapper.map_batch(fetch.items)
        to_publish: list[MappingOutcome] = []
        audited: set[str] = set()
        for raw, outcome in zip(fetch.items, mapped.outcomes):
            if self.audit_logger.log_outcome(raw, outcome, trace_id):
                audited.add(outcome.sku.upper())
            if outcome.is_success:
                to_publish.append(outcome)
                self._record_published(response, outcome)
            else:
                self._record_skipped(response, outcome)

        logger.info(
            f"PROCESSING_COMPLETE | Found: {len(fetch.items)} | NotFound: {len(fetch.not_found)} "
            f"| Mapped: {len(to_publish)} | Skipped: {len(response.skipped_items)}",
            extra={
                "metrics": {
                    "found": len(fetch.items),
                    "not_found": len(fetch.not_found),
                    "mapped": len(to_publish),
                    "skipped": len(response.skipped_items),
                }
            },
        )

        published = self.publisher.publish([o.item for o in to_publish], deadline)
        report = published.value
        delivered = report.delivered_skus if report is not None else []
        undelivered = report.failed_skus if report is not None else [o.sku for o in to_publish]

        if published.is_failure:
            response.publish_error = published.error
            response.failed_to_publish_skus = list(undelivered)
            logger.error(f"Publishing failed: {published.error}")

        # only rows written by this invocation may be flipped
        to_mark = [sku for sku in delivered if sku.upper() in audited]
        if len(to_mark) < len(delivered):
            logger.warning(
                f"Not marking {len(delivered) - len(to_mark)} delivered SKUs: audit row missing for this invocation"
            )
        if to_mark:
            self.audit_logger.mark_delivered(to_mark)

        response.items_published = len(delivered)
        response.successful_skus = list(delivered)
        response.failed = len(response.skipped_items) + (len(undelivered) if published.is_failure else 0)

        logger.info(
            f"ProcessSkus completed | Processed: {response.items_processed} "
            f"| Published: {response.items_published} | Failed: {response.failed} "
            f"| NotFound: {len(response.skus_not_found)}"
        )
        return Result.ok(response)

    def _fetch(self, requested: list[str]) -> Result[FetchResult]:
        if requested:
            return self.fetcher.fetch_by_skus(requested)
        logger.info(f"No SKUs requested, fetching latest {self.latest_items_limit} items")
        return self.fetcher.fetch_latest(self.latest_items_limit)

    @staticmethod
    def _record_published(response: ProcessingResponse, outcome: MappingOutcome) -> None:
        response.published_items.append(
            PublishedItemDetail(sku=outcome.sku, warnings=list(outcome.skipped_fields))
        )
        if outcome.skipped_fields:
            logger.info(
                f"SKU_MAPPED_WITH_WARNINGS | SKU: {outcome.sku} "
                f"| SkippedProperties: {', '.join(outcome.skipped_fields)}",
                extra={"sku": outcome.sku},
            )

    @staticmethod
    def _record_skipped(response: ProcessingResponse, outcome: MappingOutcome) -> None:
        response.skipped_items.append(
            SkippedItemDetail(
                sku=outcome.sku,
                reason=VALIDATION_FAILED_REASON,
                validation_failure=outcome.failure_reason or "Unknown validation error",
                all_validation_errors=list(outcome.errors),
            )
        )
        logger.warning(
            f"SKU_SKIPPED | SKU: {outcome.sku} | ErrorCount: {len(outcome.errors)} "
            f"| Errors: {'; '.join(outcome.errors)}",
            extra={"sku": outcome.sku, "error": outcome.validation_error.to_dict()},
        )
