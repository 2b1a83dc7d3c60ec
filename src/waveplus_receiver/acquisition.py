"""Acquisition loop: scan, read every sensor, publish, recover, repeat.

The loop is a small state machine::

    SCANNING --scan ok--> READING --any read ok--> (read_interval) --> SCANNING
        |                    |
        +--scan failed--+    +--no devices / all reads failed--+
                        v                                      v
                     COOLDOWN --reopen radio, cooldown_delay--> SCANNING

A :class:`~.watchdog.Watchdog` runs alongside. Every cycle with at least one
successful read resets it; if it expires the loop is moved to FATAL, the
acquisition task is cancelled and :func:`run_acquisition` returns a non-zero
exit code so a process supervisor can restart the receiver.

Sensors are read strictly one after another. The radio adapter cannot hold
two connections at once, and the single loop task is what serializes access
to it.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import signal
from typing import Optional

from .config import ReceiverConfig
from .errors import Cancelled, ReceiveExhausted, ScanExhausted, WatchdogExpired
from .frame import SensorValues
from .radio import RadioAdapter
from .scanner import BleScanner
from .session import SensorSession
from .shutdown import ShutdownSignal
from .sink import Sink
from .watchdog import Watchdog

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_WATCHDOG = 1
EXIT_INTERRUPTED = 130


class LoopState(enum.Enum):
    SCANNING = "scanning"
    READING = "reading"
    COOLDOWN = "cooldown"
    FATAL = "fatal"


class AcquisitionLoop:
    """Drives periodic scan-and-read cycles.

    Args:
        scanner: Produces a fresh serial-number -> session mapping per scan.
        adapter: Radio device reopened by the recovery action.
        sink: Receives every decoded reading.
        watchdog: Reset after each cycle with at least one successful read.
        config: Interval and delay settings.
        shutdown: Interrupts scans, reads and waits.
    """

    def __init__(
        self,
        scanner: BleScanner,
        adapter: RadioAdapter,
        sink: Sink,
        watchdog: Watchdog,
        config: ReceiverConfig,
        shutdown: ShutdownSignal,
    ) -> None:
        self._scanner = scanner
        self._adapter = adapter
        self._sink = sink
        self._watchdog = watchdog
        self._config = config
        self._shutdown = shutdown
        self._sessions: dict[str, SensorSession] = {}
        self.state = LoopState.SCANNING
        self.cycles = 0

    async def step(self) -> LoopState:
        """Do the work of the current state and move to the next one."""
        if self.state is LoopState.SCANNING:
            self.state = await self._scan()
        elif self.state is LoopState.READING:
            self.state = await self._read_all()
        elif self.state is LoopState.COOLDOWN:
            self.state = await self._cooldown()
        else:
            raise RuntimeError("Acquisition loop is in FATAL state")
        return self.state

    async def run(self) -> None:
        """Step until shutdown is requested or the loop turns FATAL."""
        try:
            while self.state is not LoopState.FATAL:
                await self.step()
        except Cancelled as e:
            logger.info("Acquisition loop stopped: %s", e)

    def fail(self, reason: BaseException) -> None:
        logger.critical("Acquisition loop entering FATAL state: %s", reason)
        self.state = LoopState.FATAL

    async def _scan(self) -> LoopState:
        try:
            self._sessions = await self._scanner.scan()
        except ScanExhausted as e:
            logger.error("Scan failed: %s", e)
            return LoopState.COOLDOWN
        return LoopState.READING

    async def _read_all(self) -> LoopState:
        sessions, self._sessions = self._sessions, {}
        self.cycles += 1
        if not sessions:
            logger.warning("Cycle %d: no Wave Plus devices discovered", self.cycles)
            return LoopState.COOLDOWN

        succeeded = 0
        for serial_number, session in sessions.items():
            try:
                values = await session.receive()
            except ReceiveExhausted as e:
                logger.error("Reading %s failed: %s", serial_number, e)
                continue
            succeeded += 1
            self._publish(serial_number, values)

        logger.info(
            "Cycle %d: read %d of %d device(s)", self.cycles, succeeded, len(sessions)
        )
        if not succeeded:
            return LoopState.COOLDOWN

        self._watchdog.reset()
        await self._shutdown.sleep(self._config.read_interval, "read interval")
        return LoopState.SCANNING

    def _publish(self, serial_number: str, values: SensorValues) -> None:
        try:
            self._sink.publish(serial_number, values)
        except Exception:
            logger.exception("Sink failed to publish reading for %s", serial_number)

    async def recover(self) -> None:
        """Recovery action for a failed cycle: reopen the radio device."""
        try:
            await self._adapter.reopen_device()
        except Exception as e:
            # The next scan will fail and bring us back here.
            logger.error("Reopening radio device failed: %s", e)

    async def _cooldown(self) -> LoopState:
        logger.info(
            "Recovering radio, next scan in %.1fs", self._config.cooldown_delay
        )
        await self.recover()
        await self._shutdown.sleep(self._config.cooldown_delay, "cooldown")
        return LoopState.SCANNING


async def run_acquisition(
    config: ReceiverConfig,
    adapter: RadioAdapter,
    sink: Sink,
    shutdown: Optional[ShutdownSignal] = None,
) -> int:
    """Run the acquisition loop under the watchdog until shutdown or expiry.

    Returns:
        ``EXIT_WATCHDOG`` if the watchdog fired, ``EXIT_INTERRUPTED`` on a
        requested shutdown, ``EXIT_OK`` otherwise.
    """
    shutdown = shutdown or ShutdownSignal()
    watchdog = Watchdog(config.watchdog_threshold, config.pulse_interval)
    scanner = BleScanner(
        adapter,
        scan_duration=config.scan_duration,
        retries=config.retries,
        operation_timeout=config.operation_timeout,
        shutdown=shutdown,
    )
    loop = AcquisitionLoop(scanner, adapter, sink, watchdog, config, shutdown)

    logger.info(
        "Starting acquisition: scan=%.1fs interval=%.1fs retries=%d watchdog=%.0fs",
        config.scan_duration,
        config.read_interval,
        config.retries,
        config.watchdog_threshold,
    )
    await adapter.open_device()

    loop_task = asyncio.create_task(loop.run(), name="acquisition-loop")
    watchdog_task = asyncio.create_task(watchdog.run(), name="watchdog")
    try:
        done, _ = await asyncio.wait(
            {loop_task, watchdog_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if watchdog_task in done:
            error = watchdog_task.exception()
            loop.fail(error or WatchdogExpired(watchdog.elapsed, watchdog.threshold))
            loop_task.cancel()
            _, pending = await asyncio.wait(
                {loop_task}, timeout=config.operation_timeout
            )
            if pending:
                # A radio call ignored cancellation; do not hang on it.
                logger.critical("Acquisition task did not stop, exiting now")
                logging.shutdown()
                os._exit(EXIT_WATCHDOG)
            return EXIT_WATCHDOG

        loop_task.result()
        return EXIT_INTERRUPTED if shutdown.is_set else EXIT_OK
    finally:
        for task in (loop_task, watchdog_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(loop_task, watchdog_task, return_exceptions=True)


def _install_signal_handlers(shutdown: ShutdownSignal) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.trigger, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: fall back to KeyboardInterrupt.
            logger.debug("Signal handler for %s not supported", sig.name)


async def _serve(config: ReceiverConfig, adapter: RadioAdapter, sink: Sink) -> int:
    shutdown = ShutdownSignal()
    _install_signal_handlers(shutdown)
    return await run_acquisition(config, adapter, sink, shutdown)


def run(config: ReceiverConfig, adapter: RadioAdapter, sink: Sink) -> int:
    """Blocking entry point for the CLI.

    Returns:
        int: Exit code:
            0: Loop ended without a shutdown request
            1: Watchdog expired or unexpected error
            130: Interrupted (SIGINT/SIGTERM)
    """
    try:
        return asyncio.run(_serve(config, adapter, sink))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
