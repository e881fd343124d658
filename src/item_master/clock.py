"""
Clock and deadline abstractions so timestamps and time budgets are injectable.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant, advanced explicitly by tests."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, seconds: float) -> None:
        self._instant = self._instant + timedelta(seconds=seconds)


class Deadline:
    """
    Point in monotonic time after which no new work should start.

    ``Deadline.none()`` never expires.
    """

    def __init__(
        self,
        expires_at: Optional[float],
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._expires_at = expires_at
        self._monotonic = monotonic

    @classmethod
    def after_ms(
        cls,
        budget_ms: float,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> "Deadline":
        return cls(monotonic() + max(budget_ms, 0) / 1000.0, monotonic)

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._monotonic())

    def allows(self, seconds: float) -> bool:
        """Whether waiting ``seconds`` still leaves the deadline unexpired."""
        remaining = self.remaining()
        return remaining is None or seconds < remaining
