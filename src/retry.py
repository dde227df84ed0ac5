"""
Fixed-delay retry policy for remote queries that fail transiently.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from errors import RemoteCommandError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (RemoteCommandError, ValueError)


@dataclass
class RetryPolicy:
    """Run an operation up to `attempts` times, sleeping `delay` seconds between tries."""

    attempts: int = 5
    delay: float = 1.0

    def call(
        self,
        operation: Callable[[], T],
        description: str,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> T:
        """
        Execute operation with retries.

        Args:
            operation: Zero-argument callable; raises on failure
            description: What the operation does, used in log and error messages
            log: Logger to report failed attempts on

        Returns:
            The operation's return value

        Raises:
            RetryExhaustedError: If every attempt failed
        """
        log = log or logger
        last_error: Optional[Exception] = None

        for attempt in range(1, self.attempts + 1):
            try:
                return operation()
            except TRANSIENT_ERRORS as e:
                last_error = e
                log.warning(
                    f"WARNING: Failed to connect to cluster while trying to {description} "
                    f"(attempt {attempt}/{self.attempts}): {e}"
                )
                if attempt < self.attempts:
                    time.sleep(self.delay)

        raise RetryExhaustedError(
            f"Failed to {description} after {self.attempts} attempts: {last_error}"
        )
