"""Pytest fixtures and configuration."""

import os
from datetime import datetime, timezone

import pytest

os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

from item_master.audit import AuditLogger, InMemoryAuditStore
from item_master.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from item_master.clock import FixedClock
from item_master.mapper import UnifiedItemMapper
from item_master.models import RawSourceItem
from item_master.orchestrator import ProcessingOrchestrator
from item_master.publisher import ResilientPublisher
from item_master.queue_client import InMemoryQueueClient
from item_master.retry import RetryConfig
from item_master.warehouse import InMemoryWarehouseRepository, ItemFetcher

SETTINGS_ENV_VARS = (
    "SQS_QUEUE_URL",
    "SQS_MAX_RETRIES",
    "SQS_BASE_DELAY_MS",
    "SQS_BACKOFF_MULTIPLIER",
    "SQS_RETRY_JITTER",
    "SQS_BATCH_SIZE",
    "WAREHOUSE_URL",
    "WAREHOUSE_TABLE",
    "AUDIT_DATABASE_URL",
    "ITEMMASTER_TEST_MODE",
    "LATEST_ITEMS_LIMIT",
    "LOG_LEVEL",
)


class FakeMonotonic:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep stand-in that records delays and advances a fake clock."""

    def __init__(self, monotonic: FakeMonotonic = None):
        self.delays: list[float] = []
        self.monotonic = monotonic

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.monotonic is not None:
            self.monotonic.advance(seconds)


def make_raw_item(**overrides) -> RawSourceItem:
    """Build a valid raw warehouse record, overriding selected columns."""
    data = {
        "sku": "TEST-001",
        "product_title": "Test Item 1",
        "barcode": "1111111111111",
        "hts": "6109100012",
        "country_of_origin": "SG",
        "price": 19.99,
        "cost": 10.0,
        "landed_cost": 12.0,
        "size": "M",
        "color": "Blue",
        "brand": "Northwind",
        "category": "Clothing",
        "product_type": "Tops",
        "fabric_content": "Cotton",
        "fabric_composition": "100% Cotton",
        "created_at_snowflake": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        "updated_at_snowflake": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return RawSourceItem(**data)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Keep settings-related environment variables out of every test."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def raw_item():
    return make_raw_item()


@pytest.fixture
def fixed_clock():
    return FixedClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def recording_sleep(monotonic):
    return RecordingSleep(monotonic)


@pytest.fixture
def catalogue():
    """Warehouse records covering the valid and invalid cases."""
    return [
        make_raw_item(),
        make_raw_item(
            sku="TEST-002",
            product_title="Test Item 2",
            barcode="2222222222222",
            updated_at_snowflake=datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc),
        ),
        make_raw_item(
            sku="NO-LANDED-COST",
            product_title="No Landed Cost Test",
            barcode="7070707070707",
            landed_cost=0.0,
        ),
    ]


@pytest.fixture
def warehouse(catalogue):
    return InMemoryWarehouseRepository(catalogue)


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def queue_client():
    return InMemoryQueueClient()


@pytest.fixture
def circuit_breaker(monotonic):
    return CircuitBreaker(
        name="test",
        config=CircuitBreakerConfig(
            failure_threshold=5,
            duration_of_break_seconds=30,
            sampling_duration_seconds=60,
            minimum_throughput=3,
        ),
        monotonic=monotonic,
    )


@pytest.fixture
def publisher(queue_client, circuit_breaker, recording_sleep):
    return ResilientPublisher(
        queue_client,
        retry_config=RetryConfig(max_retries=2, base_delay_ms=1000, backoff_multiplier=2.0),
        batch_size=10,
        circuit_breaker=circuit_breaker,
        sleep=recording_sleep,
    )


@pytest.fixture
def orchestrator(warehouse, audit_store, publisher, fixed_clock):
    return ProcessingOrchestrator(
        fetcher=ItemFetcher(warehouse),
        mapper=UnifiedItemMapper(),
        audit_logger=AuditLogger(audit_store, fixed_clock),
        publisher=publisher,
        latest_items_limit=100,
    )
