"""
Reliability - Bounded exponential-backoff retry for upstream API calls.

Errors are classified by status code: rate limiting and temporary gateway
failures (429, 502, 503, 504) are retried, everything else propagates on the
first attempt.
"""

import asyncio
import re
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .logger import ComponentLogger

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})
MAX_RETRIES = 3
BASE_DELAY = 1.0

_STATUS_IN_MESSAGE = re.compile(r"\b(429|502|503|504)\b")

_logger = ComponentLogger("reliability")


def extract_status_code(error: BaseException) -> Optional[int]:
    """
    Find the HTTP status code associated with an error.

    Looks at a structured ``status`` attribute first (aiohttp and upstream
    client errors), then ``error.response.status``, and finally parses a
    transient status code out of the error message.

    Args:
        error: Exception raised by an upstream call

    Returns:
        Status code, or None when none can be determined
    """
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status

    response = getattr(error, "response", None)
    response_status = getattr(response, "status", None)
    if isinstance(response_status, int):
        return response_status

    match = _STATUS_IN_MESSAGE.search(str(error))
    if match:
        return int(match.group(1))
    return None


def is_transient_error(error: BaseException) -> bool:
    """Whether an error is expected to resolve itself on retry."""
    return extract_status_code(error) in TRANSIENT_STATUS_CODES


class RetryManager:
    """Retries transient upstream failures with exponential backoff."""

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the retry policy.

        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay in seconds before the first retry, doubled each time
            sleep: Coroutine used to wait between attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep
        self.retry_counts: Dict[str, int] = defaultdict(int)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (0-based attempt)."""
        return self.base_delay * (2 ** attempt)

    async def retry_with_backoff(
        self, operation: Callable[[], Awaitable[T]], label: str
    ) -> T:
        """
        Run an operation, retrying transient failures.

        Args:
            operation: Zero-argument coroutine function to run
            label: Operation name used in log events

        Returns:
            The operation's result

        Raises:
            Exception: The first fatal error, or the last transient error once
                retries are exhausted
        """
        total_attempts = self.max_retries + 1
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                status = extract_status_code(e)
                if status not in TRANSIENT_STATUS_CODES:
                    raise
                if attempt >= self.max_retries:
                    _logger.error("retry_exhausted",
                        operation=label,
                        attempts=total_attempts,
                        status=status,
                    )
                    raise
                delay = self.delay_for(attempt)
                self.retry_counts[label] += 1
                _logger.warning("retry_scheduled",
                    operation=label,
                    status=status,
                    attempt=attempt + 1,
                    max_attempts=total_attempts,
                    delay_seconds=delay,
                )
                await self._sleep(delay)
                attempt += 1

