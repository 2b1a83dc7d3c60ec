"""Liveness watchdog for the acquisition loop.

The watchdog owns a single counter: liveness pulses missed since the last
successful read. Nothing else touches it. The pulse emitter and the
acquisition loop only post events to a queue (:meth:`Watchdog.pulse`,
:meth:`Watchdog.reset`) and :meth:`Watchdog.run` applies them in order.

When ``missed_pulses * pulse_interval`` exceeds the threshold, :meth:`run`
raises :class:`WatchdogExpired`. The caller is expected to terminate the
process and let a supervisor restart it.
"""

from __future__ import annotations

import asyncio
import enum
import logging

from .errors import WatchdogExpired

logger = logging.getLogger(__name__)


class WatchdogEvent(enum.Enum):
    PULSE = "pulse"
    RESET = "reset"


class Watchdog:
    """Counts liveness pulses since the last successful read.

    Args:
        threshold: Seconds of accumulated pulses without a reset after which
            the watchdog fires.
        pulse_interval: Seconds between pulses from the built-in emitter.
    """

    def __init__(self, threshold: float, pulse_interval: float) -> None:
        if pulse_interval <= 0:
            raise ValueError(f"pulse_interval must be positive, got {pulse_interval}")
        self.threshold = threshold
        self.pulse_interval = pulse_interval
        self._events: asyncio.Queue[WatchdogEvent] = asyncio.Queue()
        self._missed_pulses = 0

    @property
    def missed_pulses(self) -> int:
        return self._missed_pulses

    @property
    def elapsed(self) -> float:
        """Seconds accounted for by pulses since the last reset."""
        return self._missed_pulses * self.pulse_interval

    def pulse(self) -> None:
        self._events.put_nowait(WatchdogEvent.PULSE)

    def reset(self) -> None:
        """Report a successful read."""
        self._events.put_nowait(WatchdogEvent.RESET)

    def _apply(self, event: WatchdogEvent) -> None:
        if event is WatchdogEvent.RESET:
            if self._missed_pulses:
                logger.debug(
                    "Watchdog reset after %d pulse(s)", self._missed_pulses
                )
            self._missed_pulses = 0
            return

        self._missed_pulses += 1
        if self.elapsed > self.threshold:
            logger.critical(
                "Watchdog expired: no successful read for %.0fs (threshold %.0fs)",
                self.elapsed,
                self.threshold,
            )
            raise WatchdogExpired(self.elapsed, self.threshold)
        if self.elapsed > self.threshold / 2:
            logger.warning(
                "No successful read for %.0fs (watchdog fires after %.0fs)",
                self.elapsed,
                self.threshold,
            )

    async def _emit_pulses(self) -> None:
        while True:
            await asyncio.sleep(self.pulse_interval)
            self.pulse()

    async def run(self) -> None:
        """Emit pulses and apply events until the watchdog expires.

        Raises:
            WatchdogExpired: When the threshold is exceeded.
        """
        emitter = asyncio.create_task(self._emit_pulses())
        try:
            while True:
                event = await self._events.get()
                self._apply(event)
        finally:
            emitter.cancel()
            await asyncio.gather(emitter, return_exceptions=True)
