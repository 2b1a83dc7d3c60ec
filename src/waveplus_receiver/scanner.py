"""Discovery of Wave Plus sensors from BLE advertisements."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import InvalidAdvertisement, ScanExhausted
from .identity import is_wave_plus, resolve_serial_number
from .radio import Advertisement, AdvertisementFilter, RadioAdapter
from .retry import RetryPolicy
from .session import SensorSession
from .shutdown import ShutdownSignal

logger = logging.getLogger(__name__)


class BleScanner:
    """Finds Wave Plus sensors and builds a :class:`SensorSession` for each.

    Every call to :meth:`scan` returns a brand-new mapping; sessions from a
    previous scan are never reused because link addresses may rotate.

    Args:
        adapter: Radio used for scanning and later by the sessions.
        scan_duration: Seconds per listen window.
        retries: Scan attempts before :class:`ScanExhausted`; also passed to
            each session as its receive budget.
        operation_timeout: Per-GATT-operation timeout given to the sessions.
        shutdown: Signal that aborts an in-flight scan with ``Cancelled``.
        predicate: Advertisement filter, Wave Plus signature by default.
    """

    def __init__(
        self,
        adapter: RadioAdapter,
        *,
        scan_duration: float,
        retries: int,
        operation_timeout: float,
        shutdown: Optional[ShutdownSignal] = None,
        predicate: AdvertisementFilter = is_wave_plus,
    ) -> None:
        self._adapter = adapter
        self._scan_duration = scan_duration
        self._retries = retries
        self._operation_timeout = operation_timeout
        self._shutdown = shutdown or ShutdownSignal()
        self._predicate = predicate
        self._policy = RetryPolicy(retries)

    async def scan(self) -> dict[str, SensorSession]:
        """Scan once (with retries) and map serial numbers to sessions.

        Raises:
            ScanExhausted: If every scan attempt failed; chained from the
                last radio error.
            Cancelled: If shutdown was requested during the scan.
        """
        return await self._policy.run(
            self._scan_once,
            description="scan for Wave Plus devices",
            exhausted=ScanExhausted,
        )

    async def _scan_once(self) -> dict[str, SensorSession]:
        logger.info("Scanning for Wave Plus devices for %.1fs", self._scan_duration)
        self._shutdown.check("scan for devices")
        # A listen that overruns its window is treated as a timeout and retried.
        advertisements = await self._shutdown.guard(
            asyncio.wait_for(
                self._adapter.scan(self._scan_duration, self._predicate),
                self._scan_duration + self._operation_timeout,
            ),
            "scan for devices",
        )

        # Keep the most recent payload per link address.
        by_address: dict[str, Advertisement] = {}
        for advertisement in advertisements:
            if not self._predicate(advertisement):
                continue
            by_address[advertisement.address.upper()] = advertisement

        sessions: dict[str, SensorSession] = {}
        for advertisement in by_address.values():
            try:
                serial_number = resolve_serial_number(advertisement.manufacturer_data)
            except InvalidAdvertisement as e:
                logger.warning(
                    "Dropping advertisement from %s: %s", advertisement.address, e
                )
                continue

            previous = sessions.get(serial_number)
            if previous is not None:
                logger.warning(
                    "Serial number %s advertised by both %s and %s; using %s",
                    serial_number,
                    previous.address,
                    advertisement.address,
                    advertisement.address,
                )

            sessions[serial_number] = SensorSession(
                serial_number,
                advertisement.address,
                self._adapter,
                scan_duration=self._scan_duration,
                retries=self._retries,
                operation_timeout=self._operation_timeout,
                shutdown=self._shutdown,
                rssi=advertisement.rssi,
            )
            logger.info(
                "Found Wave Plus %s at %s (RSSI %s)",
                serial_number,
                advertisement.address,
                advertisement.rssi,
            )

        logger.info("Scan found %d Wave Plus device(s)", len(sessions))
        return sessions
