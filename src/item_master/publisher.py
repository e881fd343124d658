"""
Publishes unified items to the queue in fixed-size batches.

Each batch attempt is one queue call routed through the circuit breaker.
Entries that fail with a retryable error are resent on their own with
exponential backoff; entries rejected by the queue as malformed are not.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from item_master.circuit_breaker import CircuitBreaker
from item_master.clock import Deadline
from item_master.exceptions import CircuitOpenError
from item_master.logging_config import LogContext, get_trace_id
from item_master.models import UnifiedItem
from item_master.queue_client import QueueClient, QueueMessage, SendOutcome
from item_master.result import Result
from item_master.retry import RetryConfig, is_retryable_exception, sleep_within_deadline

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500
CIRCUIT_OPEN_REASON = "Circuit breaker is open"
DEADLINE_REASON = "Deadline exceeded"


@dataclass
class BatchPublishResult:
    """Outcome of one publish batch after its retries."""
    successful: list[QueueMessage] = field(default_factory=list)
    failed: list[QueueMessage] = field(default_factory=list)
    queue_failures: dict[str, SendOutcome] = field(default_factory=dict)
    attempts: int = 0
    circuit_breaker_tripped: bool = False
    deadline_exceeded: bool = False
    exception: Optional[Exception] = None

    def failure_reason(self, message: Optional[QueueMessage] = None) -> Optional[str]:
        if not self.failed:
            return None
        if self.circuit_breaker_tripped:
            return CIRCUIT_OPEN_REASON
        if self.deadline_exceeded:
            return DEADLINE_REASON
        if self.exception is not None:
            return str(self.exception)
        target = message or self.failed[0]
        outcome = self.queue_failures.get(target.id)
        if outcome is not None:
            return outcome.error_message or outcome.error_code or "Unknown error"
        return "Unknown error"


@dataclass
class PublishReport:
    total: int = 0
    delivered_skus: list[str] = field(default_factory=list)
    failed_skus: list[str] = field(default_factory=list)
    batches: list[BatchPublishResult] = field(default_factory=list)

    @property
    def circuit_open(self) -> bool:
        return any(batch.circuit_breaker_tripped for batch in self.batches)

    @property
    def failure_reason(self) -> Optional[str]:
        for batch in self.batches:
            reason = batch.failure_reason()
            if reason:
                return reason
        return None

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "delivered": len(self.delivered_skus),
            "failed": len(self.failed_skus),
            "batches": len(self.batches),
            "circuit_open": self.circuit_open,
        }


class ResilientPublisher:
    """Batched, retrying, circuit-breaker-protected queue publisher."""

    def __init__(
        self,
        queue_client: QueueClient,
        retry_config: Optional[RetryConfig] = None,
        batch_size: int = 100,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self.queue_client = queue_client
        self.retry_config = retry_config or RetryConfig()
        self.batch_size = batch_size
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self._sleep = sleep

    def publish(
        self,
        items: list[UnifiedItem],
        deadline: Optional[Deadline] = None,
    ) -> Result[PublishReport]:
        deadline = deadline or Deadline.none()
        report = PublishReport(total=len(items))
        if not items:
            return Result.ok(report)

        trace_id = get_trace_id()
        messages = [self._to_message(index, item, trace_id) for index, item in enumerate(items)]
        batches = [
            messages[start:start + self.batch_size]
            for start in range(0, len(messages), self.batch_size)
        ]

        logger.info(
            f"Publishing {len(items)} items in {len(batches)} batches",
            extra={"metrics": {"items": len(items), "batches": len(batches)}},
        )

        for number, batch in enumerate(batches, start=1):
            batch_id = f"{trace_id or 'batch'}-{number}"
            with LogContext(batch_id=batch_id):
                batch_result = self._publish_batch(batch, deadline)
            report.batches.append(batch_result)
            report.delivered_skus.extend(m.sku for m in batch_result.successful)
            report.failed_skus.extend(m.sku for m in batch_result.failed)

        logger.info(
            "Queue publishing complete",
            extra={"metrics": report.to_dict()},
        )

        if not report.failed_skus:
            return Result.ok(report)

        message = (
            f"Failed to publish {len(report.failed_skus)} out of {report.total} items: "
            f"{report.failure_reason}"
        )
        logger.error(message, extra={"extra_data": {"failed_skus": report.failed_skus}})
        return Result.fail(message, value=report)

    def _publish_batch(self, batch: list[QueueMessage], deadline: Deadline) -> BatchPublishResult:
        result = BatchPublishResult()
        remaining = list(batch)
        retries = 0

        while remaining:
            if deadline.expired:
                result.deadline_exceeded = True
                break

            result.attempts += 1
            try:
                outcomes = self.circuit_breaker.execute(
                    lambda: self.queue_client.send_batch(remaining),
                    is_failure=lambda outs: bool(outs) and not any(o.success for o in outs),
                )
            except CircuitOpenError as e:
                logger.error(
                    f"Circuit breaker is open, skipping {len(remaining)} messages"
                )
                result.circuit_breaker_tripped = True
                result.exception = e
                break
            except Exception as e:
                result.exception = e
                logger.error(
                    f"Error publishing {len(remaining)} messages "
                    f"(attempt {result.attempts}/{self.retry_config.max_attempts}): {e}"
                )
                if not is_retryable_exception(e) or retries >= self.retry_config.max_retries:
                    break
                retries += 1
                if not self._backoff(retries, deadline, result):
                    break
                continue

            result.exception = None
            by_id = {outcome.id: outcome for outcome in outcomes}
            retry_next: list[QueueMessage] = []
            for message in remaining:
                outcome = by_id.get(message.id)
                if outcome is not None and outcome.success:
                    result.successful.append(message)
                    result.queue_failures.pop(message.id, None)
                    continue

                outcome = outcome or SendOutcome(
                    id=message.id,
                    success=False,
                    error_code="MissingResult",
                    error_message="No result returned for entry",
                    retryable=True,
                )
                result.queue_failures[message.id] = outcome
                if outcome.retryable:
                    retry_next.append(message)
                else:
                    result.failed.append(message)

            remaining = retry_next
            if not remaining:
                break

            if retries >= self.retry_config.max_retries:
                logger.error(
                    f"Exhausted {self.retry_config.max_retries} retries; "
                    f"{len(remaining)} messages could not be published"
                )
                break

            retries += 1
            logger.warning(
                f"Batch had {len(remaining)} failed messages. Retrying failed messages "
                f"(retry {retries}/{self.retry_config.max_retries})"
            )
            if not self._backoff(retries, deadline, result):
                break

        result.failed.extend(remaining)
        for message in result.failed:
            logger.error(
                f"Failed to publish {message.sku}: {result.failure_reason(message)}",
                extra={"sku": message.sku},
            )
        return result

    def _backoff(self, retry_number: int, deadline: Deadline, result: BatchPublishResult) -> bool:
        delay = self.retry_config.calculate_delay(retry_number)
        if sleep_within_deadline(delay, deadline, self._sleep):
            return True
        result.deadline_exceeded = True
        return False

    @staticmethod
    def _to_message(index: int, item: UnifiedItem, trace_id: str) -> QueueMessage:
        attributes = {"Sku": item.sku}
        if trace_id:
            attributes["TraceId"] = trace_id
        return QueueMessage(
            id=f"msg-{index}",
            sku=item.sku,
            body=item.to_message_body(),
            attributes=attributes,
        )
