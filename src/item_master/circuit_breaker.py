"""
Circuit breaker guarding calls to the message queue.

States:
- CLOSED: calls pass through and their outcomes are sampled.
- OPEN: calls are rejected without touching the dependency.
- HALF_OPEN: a single probe call is let through to test recovery.

One breaker lives as long as its publisher, so in a warm Lambda container it
carries state across invocations. All state changes happen under a lock.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict

from item_master.exceptions import CircuitOpenError, ErrorContext
from item_master.logging_config import get_trace_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    duration_of_break_seconds: float = 30.0
    sampling_duration_seconds: float = 60.0
    minimum_throughput: int = 3

    @property
    def failure_ratio(self) -> float:
        """Failure ratio that trips the breaker; a threshold of 5 means half the sampled calls."""
        return min(1.0, self.failure_threshold / 10.0)


class CircuitBreakerSnapshot(BaseModel):
    """Point-in-time view of a breaker, for logs and responses."""
    model_config = ConfigDict(frozen=True)

    name: str
    state: CircuitState
    sampled_calls: int
    sampled_failures: int
    retry_after_seconds: Optional[float] = None


class CircuitBreaker:
    """Sliding-window failure-ratio breaker, evaluated per queue call."""

    def __init__(
        self,
        name: str = "sqs",
        config: Optional[CircuitBreakerConfig] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._samples: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._monotonic())
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            now = self._monotonic()
            self._refresh(now)
            return CircuitBreakerSnapshot(
                name=self.name,
                state=self._state,
                sampled_calls=len(self._samples),
                sampled_failures=sum(1 for _, failed in self._samples if failed),
                retry_after_seconds=self._retry_after(now),
            )

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            now = self._monotonic()
            self._refresh(now)

            if self._state == CircuitState.OPEN:
                raise self._rejection(now)

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise self._rejection(now)
                self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            now = self._monotonic()
            if self._state == CircuitState.HALF_OPEN:
                self._close("Probe succeeded")
                return
            self._sample(now, failed=False)

    def record_failure(self) -> None:
        with self._lock:
            now = self._monotonic()
            if self._state == CircuitState.HALF_OPEN:
                self._trip(now, "Probe failed")
                return
            self._sample(now, failed=True)
            self._evaluate(now)

    def execute(
        self,
        func: Callable[[], T],
        is_failure: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """
        Run ``func`` through the breaker.

        A call counts as failed when it raises, or when ``is_failure`` says its
        result is a failure.
        """
        self.before_call()
        try:
            result = func()
        except Exception:
            self.record_failure()
            raise

        if is_failure is not None and is_failure(result):
            self.record_failure()
        else:
            self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed."""
        with self._lock:
            self._close("Manual reset")

    def _refresh(self, now: float) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.config.duration_of_break_seconds
        ):
            self._probe_in_flight = False
            self._transition(CircuitState.HALF_OPEN, "Break duration elapsed. Probing.")

    def _sample(self, now: float, failed: bool) -> None:
        self._samples.append((now, failed))
        self._prune(now)

    def _prune(self, now: float) -> None:
        horizon = now - self.config.sampling_duration_seconds
        while self._samples and self._samples[0][0] < horizon:
            self._samples.popleft()

    def _evaluate(self, now: float) -> None:
        if self._state != CircuitState.CLOSED:
            return
        total = len(self._samples)
        if total < self.config.minimum_throughput:
            return
        failures = sum(1 for _, failed in self._samples if failed)
        if failures / total >= self.config.failure_ratio:
            self._trip(now, f"{failures}/{total} sampled calls failed")

    def _trip(self, now: float, reason: str) -> None:
        self._opened_at = now
        self._probe_in_flight = False
        self._samples.clear()
        self._transition(
            CircuitState.OPEN,
            f"{reason}. Breaking for {self.config.duration_of_break_seconds:g}s",
        )

    def _close(self, reason: str) -> None:
        self._opened_at = None
        self._probe_in_flight = False
        self._samples.clear()
        self._transition(CircuitState.CLOSED, reason)

    def _retry_after(self, now: float) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return max(0.0, self.config.duration_of_break_seconds - (now - self._opened_at))

    def _rejection(self, now: float) -> CircuitOpenError:
        retry_after = self._retry_after(now) or 0.0
        return CircuitOpenError(
            message=f"Circuit {self.name} is {self._state.value}; call rejected",
            retry_after_seconds=retry_after,
            context=ErrorContext(trace_id=get_trace_id()),
        )

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        if self._state != new_state:
            old_state = self._state
            self._state = new_state
            logger.warning(
                f"Circuit {self.name}: {old_state.value} -> {new_state.value} | {reason}"
            )
