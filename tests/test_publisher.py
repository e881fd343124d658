"""Tests for the resilient queue publisher."""

import math

import pytest

from item_master.clock import Deadline
from item_master.logging_config import LogContext
from item_master.models import UnifiedItem
from item_master.publisher import CIRCUIT_OPEN_REASON, DEADLINE_REASON, ResilientPublisher
from item_master.queue_client import InMemoryQueueClient
from item_master.retry import RetryConfig


def _items(count):
    return [
        UnifiedItem(sku=f"SKU-{i:03d}", name=f"Item {i}", country_of_origin_code="US")
        for i in range(count)
    ]


def _publisher(queue_client, circuit_breaker, sleep, batch_size=10, max_retries=2):
    return ResilientPublisher(
        queue_client,
        retry_config=RetryConfig(max_retries=max_retries, base_delay_ms=1000, backoff_multiplier=2.0),
        batch_size=batch_size,
        circuit_breaker=circuit_breaker,
        sleep=sleep,
    )


class TestBatching:
    """Tests for batch splitting."""

    @pytest.mark.parametrize("count", [1, 10, 11, 25])
    def test_one_call_per_batch(self, publisher, queue_client, count):
        """Test N items need ceil(N/10) queue calls."""
        result = publisher.publish(_items(count))

        assert result.is_success
        assert queue_client.call_count == math.ceil(count / 10)
        assert len(result.value.delivered_skus) == count

    def test_no_items_no_calls(self, publisher, queue_client):
        """Test publishing nothing touches nothing."""
        result = publisher.publish([])

        assert result.is_success
        assert queue_client.call_count == 0

    def test_message_attributes(self, publisher, queue_client):
        """Test messages carry SKU and trace ID attributes."""
        with LogContext(trace_id="trace-abc"):
            publisher.publish(_items(1))

        message = queue_client.sent[0]
        assert message.attributes == {"Sku": "SKU-000", "TraceId": "trace-abc"}
        assert message.id == "msg-0"

    @pytest.mark.parametrize("batch_size", [0, 501])
    def test_batch_size_bounds(self, queue_client, batch_size):
        """Test out-of-range batch sizes are rejected."""
        with pytest.raises(ValueError):
            ResilientPublisher(queue_client, batch_size=batch_size)


class TestRetries:
    """Tests for retrying failed entries."""

    def test_retries_only_failed_entries(self, circuit_breaker, recording_sleep):
        """Test retries resend just the failing message with growing delays."""
        queue_client = InMemoryQueueClient(transient_failures={"SKU-003": 2})
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)

        result = publisher.publish(_items(5))

        assert result.is_success
        assert [len(call) for call in queue_client.calls] == [5, 1, 1]
        assert [m.sku for m in queue_client.calls[1]] == ["SKU-003"]
        assert recording_sleep.delays == [1.0, 2.0]

    def test_exhausted_retries_fail(self, circuit_breaker, recording_sleep):
        """Test an entry still failing after all retries is reported."""
        queue_client = InMemoryQueueClient(transient_failures={"SKU-001": 10})
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)

        result = publisher.publish(_items(3))

        assert result.is_failure
        assert result.error == "Failed to publish 1 out of 3 items: Simulated throttling"
        assert result.value.failed_skus == ["SKU-001"]
        assert result.value.delivered_skus == ["SKU-000", "SKU-002"]
        assert queue_client.call_count == 3

    def test_permanent_failure_not_retried(self, circuit_breaker, recording_sleep):
        """Test rejected messages are not resent."""
        queue_client = InMemoryQueueClient(permanent_failures=["SKU-000"])
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)

        result = publisher.publish(_items(2))

        assert result.is_failure
        assert result.value.failed_skus == ["SKU-000"]
        assert queue_client.call_count == 1
        assert recording_sleep.delays == []

    def test_call_error_retried(self, circuit_breaker, recording_sleep):
        """Test a failed queue call is retried as a whole."""
        queue_client = InMemoryQueueClient(raise_on_calls=1)
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)

        result = publisher.publish(_items(4))

        assert result.is_success
        assert queue_client.call_count == 2
        assert recording_sleep.delays == [1.0]


class TestCircuitBreaker:
    """Tests for circuit breaker integration."""

    def test_open_circuit_skips_queue(self, queue_client, circuit_breaker, recording_sleep):
        """Test an open circuit fails every item without calling the queue."""
        for _ in range(3):
            circuit_breaker.record_failure()
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)

        result = publisher.publish(_items(12))

        assert result.is_failure
        assert queue_client.call_count == 0
        assert len(result.value.failed_skus) == 12
        assert result.value.circuit_open
        assert result.error.endswith(CIRCUIT_OPEN_REASON)

    def test_trips_during_publish(self, circuit_breaker, recording_sleep):
        """Test later batches are rejected once the circuit opens."""
        queue_client = InMemoryQueueClient(raise_on_calls=100)
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep, batch_size=1, max_retries=0)

        result = publisher.publish(_items(5))

        assert queue_client.call_count == 3
        assert len(result.value.failed_skus) == 5
        assert result.value.circuit_open


class TestDeadline:
    """Tests for deadline handling."""

    def test_expired_deadline_sends_nothing(self, publisher, queue_client, monotonic):
        """Test no calls start after the deadline."""
        deadline = Deadline.after_ms(0, monotonic)

        result = publisher.publish(_items(3), deadline)

        assert result.is_failure
        assert queue_client.call_count == 0
        assert result.error.endswith(DEADLINE_REASON)

    def test_backoff_that_overruns_is_skipped(self, circuit_breaker, recording_sleep, monotonic):
        """Test a retry whose backoff would pass the deadline is abandoned."""
        queue_client = InMemoryQueueClient(transient_failures={"SKU-000": 10})
        publisher = _publisher(queue_client, circuit_breaker, recording_sleep)
        deadline = Deadline.after_ms(1500, monotonic)

        result = publisher.publish(_items(1), deadline)

        assert result.is_failure
        assert recording_sleep.delays == [1.0]
        assert queue_client.call_count == 2
        assert result.error.endswith(DEADLINE_REASON)
