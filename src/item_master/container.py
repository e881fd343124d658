"""
Builds the immutable set of collaborators used by the handler.

Production and in-memory variants are chosen here, once per process, from
settings; nothing downstream branches on test mode.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import create_engine

from item_master.audit import AuditLogger, AuditStore, InMemoryAuditStore, SqlAuditStore
from item_master.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from item_master.classifier import RequestSourceClassifier
from item_master.clock import Clock, SystemClock
from item_master.mapper import MappingRules, UnifiedItemMapper
from item_master.orchestrator import ProcessingOrchestrator
from item_master.publisher import ResilientPublisher
from item_master.queue_client import (
    AWSClientFactory,
    InMemoryQueueClient,
    QueueClient,
    SqsQueueClient,
)
from item_master.request_parser import RequestParser
from item_master.retry import RetryConfig
from item_master.sample_data import sample_items
from item_master.settings import Settings
from item_master.warehouse import (
    InMemoryWarehouseRepository,
    ItemFetcher,
    SqlWarehouseRepository,
    WarehouseQueryBuilder,
    WarehouseRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dependencies:
    settings: Settings
    classifier: RequestSourceClassifier
    parser: RequestParser
    orchestrator: ProcessingOrchestrator
    circuit_breaker: CircuitBreaker
    queue_client: QueueClient
    audit_store: AuditStore
    warehouse: WarehouseRepository


def _build_warehouse(settings: Settings) -> WarehouseRepository:
    if settings.itemmaster_test_mode:
        return InMemoryWarehouseRepository(sample_items())
    engine = create_engine(settings.warehouse_url, pool_pre_ping=True)
    builder = WarehouseQueryBuilder(
        table=settings.warehouse_table,
        schema=settings.warehouse_schema,
        database=settings.warehouse_database,
    )
    return SqlWarehouseRepository(engine, builder)


def _build_audit_store(settings: Settings) -> AuditStore:
    if settings.itemmaster_test_mode:
        return InMemoryAuditStore()
    store = SqlAuditStore(create_engine(settings.audit_database_url, pool_pre_ping=True))
    if settings.audit_create_schema:
        store.create_schema()
    return store


def _build_queue_client(settings: Settings) -> QueueClient:
    if settings.itemmaster_test_mode:
        return InMemoryQueueClient()
    client = AWSClientFactory.get_sqs_client(
        region_name=settings.aws_region,
        endpoint_url=settings.localstack_endpoint,
    )
    return SqsQueueClient(settings.sqs_queue_url, client=client)


def build_dependencies(
    settings: Settings,
    clock: Optional[Clock] = None,
    warehouse: Optional[WarehouseRepository] = None,
    audit_store: Optional[AuditStore] = None,
    queue_client: Optional[QueueClient] = None,
) -> Dependencies:
    """Wire every collaborator; explicit arguments override the settings-based choice."""
    if warehouse is None:
        warehouse = _build_warehouse(settings)
    if audit_store is None:
        audit_store = _build_audit_store(settings)
    if queue_client is None:
        queue_client = _build_queue_client(settings)

    circuit_breaker = CircuitBreaker(
        name="sqs",
        config=CircuitBreakerConfig(
            failure_threshold=settings.sqs_circuit_breaker_failure_threshold,
            duration_of_break_seconds=settings.sqs_circuit_breaker_duration_of_break_seconds,
            sampling_duration_seconds=settings.sqs_circuit_breaker_sampling_duration_seconds,
            minimum_throughput=settings.sqs_circuit_breaker_minimum_throughput,
        ),
    )
    publisher = ResilientPublisher(
        queue_client,
        retry_config=RetryConfig(
            max_retries=settings.sqs_max_retries,
            base_delay_ms=settings.sqs_base_delay_ms,
            backoff_multiplier=settings.sqs_backoff_multiplier,
            jitter=settings.sqs_retry_jitter,
        ),
        batch_size=settings.sqs_batch_size,
        circuit_breaker=circuit_breaker,
    )
    mapper = UnifiedItemMapper(
        MappingRules(
            barcode_cutover=settings.barcode_cutover_date,
            apparel_keywords=settings.apparel_keywords,
        )
    )
    orchestrator = ProcessingOrchestrator(
        fetcher=ItemFetcher(warehouse),
        mapper=mapper,
        audit_logger=AuditLogger(audit_store, clock or SystemClock()),
        publisher=publisher,
        latest_items_limit=settings.latest_items_limit,
    )

    logger.info(
        "Dependencies built",
        extra={
            "extra_data": {
                "test_mode": settings.itemmaster_test_mode,
                "warehouse": type(warehouse).__name__,
                "audit_store": type(audit_store).__name__,
                "queue_client": type(queue_client).__name__,
            }
        },
    )

    return Dependencies(
        settings=settings,
        classifier=RequestSourceClassifier(),
        parser=RequestParser(strict=settings.strict_request_parsing),
        orchestrator=orchestrator,
        circuit_breaker=circuit_breaker,
        queue_client=queue_client,
        audit_store=audit_store,
        warehouse=warehouse,
    )
