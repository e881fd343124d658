"""
Custom exceptions for the item master pipeline.
Provides structured error handling with rich context for debugging and monitoring.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for routing and handling."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DEPENDENCY = "dependency"
    CIRCUIT_OPEN = "circuit_open"
    CONFIGURATION = "configuration"
    REQUEST = "request"


@dataclass
class ErrorContext:
    """Rich context for error tracking and debugging."""
    trace_id: Optional[str] = None
    sku: Optional[str] = None
    field_name: Optional[str] = None
    actual_value: Optional[Any] = None
    batch_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    additional_data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert context to dictionary for logging."""
        return {
            "trace_id": self.trace_id,
            "sku": self.sku,
            "field_name": self.field_name,
            "actual_value": str(self.actual_value) if self.actual_value else None,
            "batch_id": self.batch_id,
            "timestamp": self.timestamp,
            **self.additional_data,
        }


class ItemMasterError(Exception):
    """Base exception for all item master errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.DEPENDENCY,
        retryable: bool = False,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable
        self.original_exception = original_exception

    def to_dict(self) -> dict:
        """Serialize exception for logging and monitoring."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "original_exception": str(self.original_exception) if self.original_exception else None,
        }


class ConfigurationError(ItemMasterError):
    """Raised when configuration is invalid or missing. Fatal at startup."""

    def __init__(
        self,
        message: str,
        config_key: str,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        ctx = context or ErrorContext()
        ctx.additional_data["config_key"] = config_key

        super().__init__(
            message=message,
            context=ctx,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
            original_exception=original_exception,
        )
        self.config_key = config_key


class NotFoundError(ItemMasterError):
    """Raised when requested SKUs have no warehouse record."""

    def __init__(
        self,
        message: str,
        skus: list[str],
        context: Optional[ErrorContext] = None,
    ):
        ctx = context or ErrorContext()
        ctx.additional_data["skus"] = skus

        super().__init__(
            message=message,
            context=ctx,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            retryable=False,
        )
        self.skus = skus


class ValidationError(ItemMasterError):
    """Raised when an item violates one or more business rules."""

    def __init__(
        self,
        message: str,
        sku: str,
        errors: list[str],
        context: Optional[ErrorContext] = None,
    ):
        ctx = context or ErrorContext()
        ctx.sku = sku
        ctx.additional_data["validation_errors"] = errors

        super().__init__(
            message=message,
            context=ctx,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            retryable=False,
        )
        self.sku = sku
        self.errors = errors


class RequestParseError(ItemMasterError):
    """Raised when an invocation payload cannot be read as a SKU request."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            context=context,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.REQUEST,
            retryable=False,
            original_exception=original_exception,
        )


class TransientDependencyError(ItemMasterError):
    """Raised when an external dependency (warehouse, queue, audit store) is unreachable."""

    def __init__(
        self,
        message: str,
        service_name: str,
        operation: str,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        ctx = context or ErrorContext()
        ctx.additional_data["service"] = service_name
        ctx.additional_data["operation"] = operation

        super().__init__(
            message=message,
            context=ctx,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.DEPENDENCY,
            retryable=True,
            original_exception=original_exception,
        )
        self.service_name = service_name
        self.operation = operation


class WarehouseError(TransientDependencyError):
    """Raised when a warehouse query fails."""

    def __init__(
        self,
        message: str,
        operation: str = "query",
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            service_name="Warehouse",
            operation=operation,
            context=context,
            original_exception=original_exception,
        )


class AuditStoreError(TransientDependencyError):
    """Raised when the audit store rejects a write."""

    def __init__(
        self,
        message: str,
        operation: str = "append",
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            service_name="AuditStore",
            operation=operation,
            context=context,
            original_exception=original_exception,
        )


class QueuePublishError(TransientDependencyError):
    """Raised when an SQS send call fails as a whole."""

    def __init__(
        self,
        message: str,
        queue_url: str,
        failed_count: int = 0,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        ctx = context or ErrorContext()
        ctx.additional_data["queue_url"] = queue_url
        ctx.additional_data["failed_count"] = failed_count

        super().__init__(
            message=message,
            service_name="SQS",
            operation="SendMessageBatch",
            context=ctx,
            original_exception=original_exception,
        )
        self.queue_url = queue_url
        self.failed_count = failed_count


class CircuitOpenError(ItemMasterError):
    """Raised instead of calling a dependency while its circuit breaker is open."""

    def __init__(
        self,
        message: str,
        retry_after_seconds: float = 0.0,
        context: Optional[ErrorContext] = None,
    ):
        ctx = context or ErrorContext()
        ctx.additional_data["retry_after_seconds"] = round(retry_after_seconds, 3)

        super().__init__(
            message=message,
            context=ctx,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CIRCUIT_OPEN,
            retryable=False,
        )
        self.retry_after_seconds = retry_after_seconds
