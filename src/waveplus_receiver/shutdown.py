"""Process-wide shutdown signal for in-flight radio operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ShutdownSignal:
    """One-shot shutdown flag that interrupts scans, connects and sleeps.

    Radio calls are awaited through :meth:`guard`. When the signal fires
    first, the pending call is cancelled and :class:`Cancelled` is raised so
    callers can tell a requested shutdown apart from a radio timeout.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def trigger(self, reason: str = "shutdown requested") -> None:
        if self._event.is_set():
            return
        logger.info("Shutdown triggered: %s", reason)
        self._reason = reason
        self._event.set()

    def check(self, what: str) -> None:
        """Raise :class:`Cancelled` if shutdown has already been requested."""
        if self._event.is_set():
            raise Cancelled(f"{what} cancelled: {self._reason}")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T], what: str) -> T:
        """Await ``awaitable`` unless shutdown is requested first.

        Callers that build ``awaitable`` from a coroutine chain should
        :meth:`check` first, so nothing is created that would never be awaited.

        Raises:
            Cancelled: If the shutdown signal fired before ``awaitable``
                completed. The pending operation is cancelled and awaited.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise Cancelled(f"{what} cancelled: {self._reason}")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if task in done:
                return task.result()
            task.cancel()
            # Let the operation run its cleanup; its outcome no longer matters.
            await asyncio.gather(task, return_exceptions=True)
            raise Cancelled(f"{what} cancelled: {self._reason}")
        finally:
            pending = [f for f in (task, waiter) if not f.done()]
            for f in pending:
                f.cancel()
            if pending:
                # Also reached when the caller itself is cancelled.
                await asyncio.gather(*pending, return_exceptions=True)

    async def sleep(self, seconds: float, what: str = "sleep") -> None:
        """Sleep for ``seconds``; raise :class:`Cancelled` if shutdown arrives."""
        self.check(what)
        await self.guard(asyncio.sleep(seconds), what)
