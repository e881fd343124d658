"""
Retry policy with exponential backoff.
The delay before retry k (k counting from 1) is base * multiplier^(k-1).
"""

import logging
import random
import time
from typing import Callable

from botocore.exceptions import (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from item_master.clock import Deadline
from item_master.exceptions import ItemMasterError

logger = logging.getLogger(__name__)

JITTER_RANGE = (1.0, 1.25)

TRANSIENT_BOTOCORE_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 2,
        base_delay_ms: float = 1000.0,
        backoff_multiplier: float = 2.0,
        jitter: bool = False,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be > 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, retry_number: int) -> float:
        """Seconds to wait before the given retry (1 = first retry)."""
        if retry_number < 1:
            return 0.0
        delay_ms = self.base_delay_ms * (self.backoff_multiplier ** (retry_number - 1))
        # jitter only ever lengthens the wait so the minimum spacing holds
        if self.jitter:
            delay_ms *= random.uniform(*JITTER_RANGE)

        return delay_ms / 1000.0


def is_retryable_exception(exception: BaseException) -> bool:
    if isinstance(exception, ItemMasterError):
        return exception.retryable
    return isinstance(exception, TRANSIENT_BOTOCORE_ERRORS)


def sleep_within_deadline(
    seconds: float,
    deadline: Deadline,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Sleep for ``seconds`` unless doing so would run past the deadline.

    Returns False without sleeping when the wait does not fit.
    """
    if deadline.expired or not deadline.allows(seconds):
        logger.warning(
            f"Skipping backoff of {seconds:.3f}s: invocation deadline too close"
        )
        return False
    if seconds > 0:
        sleep(seconds)
    return True
