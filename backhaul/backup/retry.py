"""
Bounded retry with exponential backoff.

Every I/O step of a run (archive, dump, upload) goes through RetryExecutor:
the operation is tried up to max_attempts times, sleeping
initial_delay * 2**attempt between tries (1s, 2s, 4s with the defaults).
"""

import time
import logging
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryExhausted(Exception):
    """Raised when an operation still fails after the last attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


class RetryExecutor:
    """
    Runs zero-argument operations with bounded retries.

    Backoff sleeps happen on the calling thread, so concurrent callers
    (one per upload destination) back off independently.
    """

    def __init__(self, max_attempts: int = 4, initial_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            max_attempts: Total number of tries (4 means 3 retries)
            initial_delay: Delay in seconds before the first retry
            sleep: Sleep function, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self._sleep = sleep

    def delay_for(self, attempt_index: int) -> float:
        return self.initial_delay * (2 ** attempt_index)

    def execute(self, operation: Callable[[], T], description: Optional[str] = None) -> T:
        """
        Call operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable
            description: Optional label used in retry log lines

        Returns:
            Whatever operation returns on its first successful call

        Raises:
            RetryExhausted: After max_attempts failures, chained to the last error
        """
        last_error = None
        label = f" ({description})" if description else ''

        for attempt in range(self.max_attempts):
            try:
                return operation()
            except Exception as e:
                last_error = e

                if attempt < self.max_attempts - 1:
                    delay = self.delay_for(attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{self.max_attempts} failed{label}: {e}. "
                        f"Retrying in {delay:g}s..."
                    )
                    self._sleep(delay)

        raise RetryExhausted(self.max_attempts, last_error) from last_error

