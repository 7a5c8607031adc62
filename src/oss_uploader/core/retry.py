"""Bounded retry with exponential backoff."""

import logging
import time
from typing import Callable, Iterator, Optional, TypeVar

from .exceptions import RetryExhaustedError, is_retryable
from .models import MAX_RETRIES_CAP

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry an operation with capped exponential backoff.

    The n-th retry (counting from 0) waits ``min(base_delay * 2**n, max_delay)``
    seconds. An operation that always fails is called ``max_retries + 1`` times.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.max_retries = max(0, min(int(max_retries), MAX_RETRIES_CAP))
        if self.max_retries != max_retries:
            logger.debug(f"max_retries {max_retries} clamped to {self.max_retries}")
        self.base_delay = max(0.0, float(base_delay))
        self.max_delay = max(0.0, float(max_delay))
        self.sleep = sleep
        self.retry_on = retry_on or is_retryable

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_index: int) -> float:
        return min(self.base_delay * (2**retry_index), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry, in order."""
        for retry_index in range(self.max_retries):
            yield self.delay_for(retry_index)

    def run(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Call ``operation`` until it succeeds or the retry budget runs out.

        Raises:
            RetryExhaustedError: after the last allowed attempt failed with a
                retryable error. The last error is chained as ``__cause__``.
            Exception: any non-retryable error, unchanged and immediately.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if not self.retry_on(exc):
                    raise
                if attempt == self.max_attempts:
                    logger.error(
                        f"{description}: giving up after {attempt} attempt(s): {exc}"
                    )
                    raise RetryExhaustedError(description, attempt, exc) from exc

                backoff = self.delay_for(attempt - 1)
                logger.warning(f"{description}: attempt {attempt} failed: {exc}")
                logger.info(f"{description}: retrying in {backoff:g}s...")
                self.sleep(backoff)

        # max_attempts is always >= 1, the loop either returns or raises
        raise AssertionError("unreachable")
