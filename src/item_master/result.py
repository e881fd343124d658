"""
Explicit success/failure values returned across component boundaries.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation that may fail without raising."""
    is_success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    exception: Optional[Exception] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(is_success=True, value=value)

    @classmethod
    def fail(
        cls,
        error: str,
        value: Optional[T] = None,
        exception: Optional[Exception] = None,
    ) -> "Result[T]":
        """Build a failure; ``value`` may carry a partial outcome."""
        return cls(is_success=False, value=value, error=error, exception=exception)

    @property
    def is_failure(self) -> bool:
        return not self.is_success
