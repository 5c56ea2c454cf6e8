"""Bounded, fixed-delay retries for remote catalog calls."""

import logging
import time
from typing import Any, Callable, Optional, TypeVar

from .exceptions import PersistentRemoteError
from .utils import DEFAULT_MAX_TRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retries transient failures of remote calls.

    Failure counters are kept per logical operation, so failures of one kind
    of remote call never count against another. Whether an error is worth
    retrying is decided by its ``retryable`` attribute.
    """

    def __init__(
        self,
        max_tries: int = DEFAULT_MAX_TRIES,
        delay: float = DEFAULT_RETRY_DELAY,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the retry policy.

        Args:
            max_tries: Consecutive failures tolerated per operation before
                giving up (default: 20)
            delay: Fixed delay between attempts in seconds (default: 60)
            sleep: Function used to wait between attempts (default:
                time.sleep); tests inject a no-op
        """
        if max_tries < 1:
            raise ValueError("max_tries must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.max_tries = max_tries
        self.delay = delay
        self._sleep = sleep or time.sleep
        self._failures: dict[str, int] = {}

    def attempts(self, operation: str) -> int:
        """Current count of consecutive failures for an operation."""
        return self._failures.get(operation, 0)

    def reset(self, operation: Optional[str] = None) -> None:
        """Reset the failure counter of one operation, or of all operations."""
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def call(
        self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        """Call func, retrying retryable errors.

        Args:
            operation: Key of the logical operation the counter belongs to
            func: Callable to invoke
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returns

        Raises:
            PersistentRemoteError: After max_tries consecutive retryable
                failures
            Exception: Any non-retryable error raised by func, unchanged
        """
        while True:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if not getattr(e, "retryable", False):
                    raise

                failures = self._failures.get(operation, 0) + 1
                self._failures[operation] = failures
                if failures >= self.max_tries:
                    self._failures.pop(operation, None)
                    raise PersistentRemoteError(
                        f"{operation} failed {failures} times in a row: {e}"
                    ) from e

                logger.warning(
                    f"{operation} failed on attempt {failures}/{self.max_tries}: "
                    f"{e}; retrying in {self.delay:g}s"
                )
                self._sleep(self.delay)
                continue

            if self._failures.pop(operation, 0):
                logger.info(f"{operation} succeeded after retrying")
            return result
