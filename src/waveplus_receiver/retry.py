"""Bounded retry policy shared by every unreliable radio operation.

Scans and sensor reads both go through :class:`RetryPolicy` instead of
carrying their own retry loops. A classifier decides, per exception, whether
another attempt is worthwhile:

- ``Outcome.RETRY``: log and try again while the budget lasts.
- ``Outcome.FATAL``: re-raise immediately, the operation cannot succeed.
- ``Outcome.CANCELLED``: shutdown was requested, re-raise immediately.

``asyncio.CancelledError`` is a ``BaseException`` and is never intercepted.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import Cancelled, RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Outcome(enum.Enum):
    RETRY = "retry"
    FATAL = "fatal"
    CANCELLED = "cancelled"


Classifier = Callable[[Exception], Outcome]


def default_classifier(exc: Exception) -> Outcome:
    """Treat everything except a requested shutdown as transient."""
    if isinstance(exc, Cancelled):
        return Outcome.CANCELLED
    return Outcome.RETRY


class RetryPolicy:
    """Run a coroutine factory up to ``attempts`` times.

    Args:
        attempts: Total number of attempts, including the first one.
        delay: Seconds to wait between attempts. Zero retries immediately.
        classify: Maps an exception to an :class:`Outcome`.
        sleep: Awaitable sleep used between attempts, so a shutdown-aware
            sleep can interrupt the back-off.
    """

    def __init__(
        self,
        attempts: int,
        *,
        delay: float = 0.0,
        classify: Classifier = default_classifier,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        if attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {attempts}")
        self.attempts = attempts
        self.delay = delay
        self.classify = classify
        self._sleep = sleep or asyncio.sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str,
        exhausted: type[RetriesExhausted] = RetriesExhausted,
    ) -> T:
        """Run ``operation`` until it succeeds or the budget is spent.

        Raises:
            RetriesExhausted: (or the ``exhausted`` subclass) chained from the
                last failure once every attempt has failed.
            Exception: Any exception classified FATAL or CANCELLED, unchanged.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except Exception as e:
                outcome = self.classify(e)
                if outcome is not Outcome.RETRY:
                    logger.debug(
                        "%s: %s on attempt %d (%s)",
                        description,
                        outcome.value,
                        attempt,
                        e,
                    )
                    raise
                last_error = e
                if attempt < self.attempts:
                    logger.warning(
                        "%s failed (attempt %d/%d), retrying: %s: %s",
                        description,
                        attempt,
                        self.attempts,
                        type(e).__name__,
                        e,
                    )
                    if self.delay > 0:
                        await self._sleep(self.delay)

        raise exhausted(
            f"all {self.attempts} attempts to {description} failed: {last_error}",
            attempts=self.attempts,
        ) from last_error
