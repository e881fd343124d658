"""
Item Master Lambda - AWS serverless SKU processing.

Fetches item records from the analytical warehouse, maps and validates them
into the unified item model, audits every outcome and publishes valid items
to SQS behind retries and a circuit breaker.
"""

from item_master.exceptions import (
    AuditStoreError,
    CircuitOpenError,
    ConfigurationError,
    ItemMasterError,
    NotFoundError,
    QueuePublishError,
    RequestParseError,
    TransientDependencyError,
    ValidationError,
    WarehouseError,
)
from item_master.mapper import MappingOutcome, UnifiedItemMapper
from item_master.models import ProcessingResponse, ProcessSkusRequest, RawSourceItem, UnifiedItem

__all__ = [
    "MappingOutcome",
    "UnifiedItemMapper",
    "ProcessingResponse",
    "ProcessSkusRequest",
    "RawSourceItem",
    "UnifiedItem",
    "ItemMasterError",
    "ConfigurationError",
    "NotFoundError",
    "ValidationError",
    "RequestParseError",
    "TransientDependencyError",
    "WarehouseError",
    "AuditStoreError",
    "QueuePublishError",
    "CircuitOpenError",
]

__version__ = "1.0.0"
