"""
SightMate - Error Handler
Service error taxonomy and retry with exponential backoff for remote calls.
"""

import asyncio
import logging
from typing import Optional, Callable, Awaitable, Any

from .cancellation import InteractionCancelled

# Statuses a remote model returns when it is briefly unable to serve
RECOVERABLE_STATUSES = frozenset({429, 500, 503})


class SightMateError(Exception):
    """Base class for service failures surfaced to the orchestrator."""


class TransientServiceError(SightMateError):
    """Rate limit, overload or network blip. Worth retrying."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class FatalServiceError(SightMateError):
    """Failure that retrying will not fix."""


def is_recoverable(exc: BaseException) -> bool:
    """Whether a failed remote call should be retried."""
    if isinstance(exc, InteractionCancelled):
        return False
    if isinstance(exc, TransientServiceError):
        return True
    if isinstance(exc, FatalServiceError):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    status = getattr(exc, 'status_code', None) or getattr(exc, 'status', None)
    if status in RECOVERABLE_STATUSES:
        return True

    message = str(exc).lower()
    return 'quota' in message or 'overloaded' in message


class ErrorHandler:
    """Retries recoverable failures and keeps per-call error counts."""

    def __init__(self, attempts: int = 3, base_delay: float = 1.0,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.attempts = max(1, int(attempts))
        self.base_delay = base_delay
        self.error_counts = {}

    async def retry_async(self, func: Callable[..., Awaitable[Any]], *args,
                          attempts: Optional[int] = None,
                          base_delay: Optional[float] = None, **kwargs) -> Any:
        """
        Await func(*args, **kwargs), retrying recoverable failures.

        Delay starts at base_delay and doubles after every failed attempt.
        Non-recoverable errors and the final failure propagate unchanged.

        Args:
            func: Coroutine function to call
            attempts: Total tries including the first
            base_delay: Seconds before the first retry

        Returns:
            Whatever func returns
        """
        attempts = self.attempts if attempts is None else max(1, int(attempts))
        delay = self.base_delay if base_delay is None else base_delay
        func_name = getattr(func, '__name__', repr(func))

        for attempt in range(1, attempts + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.error_counts[func_name] = self.error_counts.get(func_name, 0) + 1
                if attempt >= attempts or not is_recoverable(e):
                    raise
                self.logger.warning(
                    f"Retry {attempt}/{attempts - 1} for {func_name} in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                delay *= 2

    def get_error_stats(self):
        """Get error statistics."""
        return self.error_counts.copy()
