"""Pytest configuration and fixtures for the Wave Plus receiver tests."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Iterable, Optional, Union

import pytest

from waveplus_receiver.radio import (
    Advertisement,
    AdvertisementFilter,
    Connection,
    RadioAdapter,
)
from waveplus_receiver.sink import Sink

# Frame from a unit reading 50 %rH, radon 100/200, 36.25 C, 700.96 hPa,
# 89 ppm CO2 and 100 ppb VOC.
SAMPLE_FRAME = bytes(
    [0, 100, 0, 0, 0x64, 0x00, 0xC8, 0x00, 0x29, 0x0E, 0xE8, 0x88, 0x59, 0x00, 0x64, 0x00, 0, 0, 0, 0]
)


def wave_plus_ad(
    address: str = "AA:BB:CC:DD:EE:01",
    serial: int = 1,
    *,
    connectable: bool = True,
    rssi: int = -60,
) -> Advertisement:
    return Advertisement(
        address=address,
        connectable=connectable,
        manufacturer_data=b"\x34\x03" + serial.to_bytes(4, "little"),
        rssi=rssi,
    )


class FakeConnection(Connection):
    """Scripted connection recording every call made on it."""

    def __init__(
        self,
        address: str,
        *,
        data: Union[bytes, Exception] = SAMPLE_FRAME,
        has_service: bool = True,
        has_characteristic: bool = True,
        confirm_disconnect: bool = True,
    ) -> None:
        self._address = address
        self._data = data
        self._has_service = has_service
        self._has_characteristic = has_characteristic
        self._confirm_disconnect = confirm_disconnect
        self._disconnected = asyncio.Event()
        self.calls: list[str] = []

    @property
    def address(self) -> str:
        return self._address

    async def discover_service(self, uuid: str) -> bool:
        self.calls.append(f"service:{uuid}")
        return self._has_service

    async def discover_characteristic(self, uuid: str) -> bool:
        self.calls.append(f"characteristic:{uuid}")
        return self._has_characteristic

    async def read_characteristic(self) -> bytes:
        self.calls.append("read")
        if isinstance(self._data, Exception):
            raise self._data
        return self._data

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        if self._confirm_disconnect:
            self._disconnected.set()

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()
        self.calls.append("disconnected")

    @property
    def disconnected(self) -> bool:
        return "disconnect" in self.calls


ScanResult = Union[list[Advertisement], Exception]
ConnectResult = Union[FakeConnection, Exception]


class FakeRadio(RadioAdapter):
    """Radio adapter replaying scripted scan and connect results.

    Scan results are consumed in order; once exhausted, ``default_scan`` is
    returned. Connect results are scripted per address in the same way.
    """

    def __init__(
        self,
        scans: Iterable[ScanResult] = (),
        *,
        default_scan: Optional[list[Advertisement]] = None,
        scan_delay: float = 0.0,
    ) -> None:
        self._scans: deque[ScanResult] = deque(scans)
        self._default_scan = default_scan or []
        self._scan_delay = scan_delay
        self._connects: dict[str, deque[ConnectResult]] = {}
        self.scan_calls = 0
        self.connect_calls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.opened = 0
        self.closed = 0
        self.active_connections = 0
        self.max_active_connections = 0

    def script_connects(self, address: str, *results: ConnectResult) -> None:
        self._connects.setdefault(address, deque()).extend(results)

    async def open_device(self) -> None:
        self.opened += 1

    async def close_device(self) -> None:
        self.closed += 1

    async def scan(
        self, duration: float, predicate: AdvertisementFilter
    ) -> list[Advertisement]:
        self.scan_calls += 1
        await asyncio.sleep(self._scan_delay)
        result = self._scans.popleft() if self._scans else self._default_scan
        if isinstance(result, Exception):
            raise result
        return [a for a in result if predicate(a)]

    async def connect(self, address: str, timeout: float) -> Connection:
        self.connect_calls.append(address)
        await asyncio.sleep(0)
        queue = self._connects.get(address)
        result: ConnectResult = (
            queue.popleft() if queue else FakeConnection(address)
        )
        if isinstance(result, Exception):
            raise result
        self.connections.append(result)
        return _TrackedConnection(result, self)


class _TrackedConnection(Connection):
    """Counts simultaneously open connections on the owning FakeRadio."""

    def __init__(self, inner: FakeConnection, radio: FakeRadio) -> None:
        self._inner = inner
        self._radio = radio
        self._open = True
        radio.active_connections += 1
        radio.max_active_connections = max(
            radio.max_active_connections, radio.active_connections
        )

    @property
    def address(self) -> str:
        return self._inner.address

    async def discover_service(self, uuid: str) -> bool:
        return await self._inner.discover_service(uuid)

    async def discover_characteristic(self, uuid: str) -> bool:
        return await self._inner.discover_characteristic(uuid)

    async def read_characteristic(self) -> bytes:
        return await self._inner.read_characteristic()

    async def disconnect(self) -> None:
        await self._inner.disconnect()

    async def wait_disconnected(self) -> None:
        await self._inner.wait_disconnected()
        if self._open:
            self._open = False
            self._radio.active_connections -= 1


class RecordingSink(Sink):
    def __init__(self) -> None:
        self.published: list[tuple] = []

    def publish(self, serial_number, values) -> None:
        self.published.append((serial_number, values))


@pytest.fixture
def radio() -> FakeRadio:
    return FakeRadio()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
