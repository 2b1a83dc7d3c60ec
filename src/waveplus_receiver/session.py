"""Connect-read-disconnect sequencing for a single Wave Plus sensor."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import CharacteristicNotFound, ReceiveExhausted
from .frame import SensorValues, decode_frame
from .radio import (
    SENSOR_CHARACTERISTIC_UUID,
    SENSOR_SERVICE_UUID,
    Connection,
    RadioAdapter,
)
from .retry import RetryPolicy
from .shutdown import ShutdownSignal

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SensorSession:
    """Reads telemetry from one sensor identified by its serial number.

    The serial number is stable; the link address is whatever the latest
    scan observed and is not expected to survive a rescan. Sessions are
    rebuilt on every scan.

    Each attempt of :meth:`receive` opens its own connection and always
    tears it down before returning, waiting for the radio stack to confirm
    the disconnect so no stale link is left behind before the next attempt
    or the next sensor.
    """

    def __init__(
        self,
        serial_number: str,
        address: str,
        adapter: RadioAdapter,
        *,
        scan_duration: float,
        retries: int,
        operation_timeout: float,
        shutdown: Optional[ShutdownSignal] = None,
        rssi: Optional[int] = None,
    ) -> None:
        self.serial_number = serial_number
        self.address = address
        self.rssi = rssi
        self._adapter = adapter
        self._scan_duration = scan_duration
        self._operation_timeout = operation_timeout
        self._shutdown = shutdown or ShutdownSignal()
        self._policy = RetryPolicy(retries)

    def __repr__(self) -> str:
        return f"SensorSession(serial_number={self.serial_number!r}, address={self.address!r})"

    async def receive(self) -> SensorValues:
        """Read and decode the current telemetry frame.

        Raises:
            ReceiveExhausted: If every attempt failed. The last failure is
                available as ``__cause__``.
            Cancelled: If shutdown was requested; no further attempts are made.
        """
        return await self._policy.run(
            self._receive_once,
            description=f"receive from {self.serial_number} ({self.address})",
            exhausted=ReceiveExhausted,
        )

    async def _receive_once(self) -> SensorValues:
        logger.debug(
            "Connecting to Wave Plus %s at %s", self.serial_number, self.address
        )
        connection = await self._bounded(
            lambda: self._adapter.connect(self.address, timeout=self._scan_duration),
            self._scan_duration,
            f"connect to {self.address}",
        )
        try:
            data = await self._read(connection)
        finally:
            await self._teardown(connection)

        values = decode_frame(data)
        logger.debug("Decoded %s: %s", self.serial_number, values)
        return values

    async def _bounded(
        self, operation: Callable[[], Awaitable[T]], timeout: float, what: str
    ) -> T:
        # The coroutine is only created once shutdown has been ruled out.
        self._shutdown.check(what)
        return await self._shutdown.guard(
            asyncio.wait_for(operation(), timeout), what
        )

    async def _read(self, connection: Connection) -> bytes:
        timeout = self._operation_timeout

        if not await self._bounded(
            lambda: connection.discover_service(SENSOR_SERVICE_UUID),
            timeout,
            "service discovery",
        ):
            raise CharacteristicNotFound(
                f"service {SENSOR_SERVICE_UUID} not found on {connection.address}"
            )
        if not await self._bounded(
            lambda: connection.discover_characteristic(SENSOR_CHARACTERISTIC_UUID),
            timeout,
            "characteristic discovery",
        ):
            raise CharacteristicNotFound(
                f"characteristic {SENSOR_CHARACTERISTIC_UUID} not found on {connection.address}"
            )

        data = await self._bounded(
            connection.read_characteristic, timeout, "characteristic read"
        )
        logger.debug("Read %d bytes from %s: %s", len(data), self.address, data.hex())
        return data

    async def _teardown(self, connection: Connection) -> None:
        # Runs on every exit path, including cancellation; it must not be
        # skipped by the shutdown signal.
        try:
            await connection.disconnect()
        except Exception as e:
            logger.warning("Disconnect from %s failed: %s", self.address, e)
        try:
            await asyncio.wait_for(
                connection.wait_disconnected(), self._operation_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "Disconnect from %s not confirmed within %.1fs",
                self.address,
                self._operation_timeout,
            )
        else:
            logger.debug("Disconnected from %s", self.address)
