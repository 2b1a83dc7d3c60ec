"""Radio adapter abstraction with bleak and mock implementations.

The acquisition pipeline talks to the BLE stack only through
:class:`RadioAdapter` and :class:`Connection`. Those expose the handful of
primitives the pipeline needs (open/close the device, scan, connect, discover,
read, disconnect) and keep every bleak-specific detail in this module.

Implementations:
- :class:`BleakRadioAdapter`: real hardware through bleak.
- :class:`MockRadioAdapter`: synthetic Wave Plus sensors for running the
  receiver without hardware (``--mock``).
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .frame import SensorValues, encode_frame
from .identity import WAVE_PLUS_SIGNATURE

logger = logging.getLogger(__name__)


# Wave Plus telemetry service and characteristic
SENSOR_SERVICE_UUID = "b42e1c08-ade7-11e4-89d3-123b93f75cba"
SENSOR_CHARACTERISTIC_UUID = "b42e2a68-ade7-11e4-89d3-123b93f75cba"


@dataclass(frozen=True)
class Advertisement:
    """A single advertisement observed during a scan.

    Attributes:
        address: Link-layer address. May change between scans.
        connectable: Whether the advertiser accepts connections.
        manufacturer_data: Manufacturer-specific data as sent on air,
            starting with the 2-byte little-endian company identifier.
        rssi: Received signal strength in dBm, if known.
        name: Advertised local name, if any.
    """

    address: str
    connectable: bool
    manufacturer_data: bytes
    rssi: Optional[int] = None
    name: Optional[str] = None


AdvertisementFilter = Callable[[Advertisement], bool]


class Connection(ABC):
    """An established link to one peripheral."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def discover_service(self, uuid: str) -> bool:
        """Select the service ``uuid``. Returns False if the device lacks it."""
        pass

    @abstractmethod
    async def discover_characteristic(self, uuid: str) -> bool:
        """Select characteristic ``uuid`` within the selected service."""
        pass

    @abstractmethod
    async def read_characteristic(self) -> bytes:
        """Read the current value of the selected characteristic."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Request link teardown. Safe to call on an already-dropped link."""
        pass

    @abstractmethod
    async def wait_disconnected(self) -> None:
        """Block until the radio stack confirms the link is gone."""
        pass


class RadioAdapter(ABC):
    """Access to the local BLE controller.

    The adapter is a single shared resource; callers serialize access to it
    and never hold two connections at once.
    """

    @abstractmethod
    async def open_device(self) -> None:
        pass

    @abstractmethod
    async def close_device(self) -> None:
        pass

    async def reopen_device(self) -> None:
        """Tear down and reopen the controller.

        Coarse recovery for a radio stack that wedges after certain errors.
        """
        logger.info("Reopening radio device")
        try:
            await self.close_device()
        except Exception as e:
            # A controller that will not close may still come back on open.
            logger.warning("Closing radio device failed, reopening anyway: %s", e)
        await self.open_device()

    @abstractmethod
    async def scan(
        self, duration: float, predicate: AdvertisementFilter
    ) -> list[Advertisement]:
        """Listen for ``duration`` seconds and return matching advertisements."""
        pass

    @abstractmethod
    async def connect(self, address: str, timeout: float) -> Connection:
        """Connect to ``address``, giving up after ``timeout`` seconds."""
        pass


def manufacturer_data_from_bleak(adv: AdvertisementData) -> bytes:
    """Rebuild on-air manufacturer data from bleak's company-id keyed mapping.

    bleak strips the 2-byte company identifier and uses it as the dict key.
    The identity resolver expects the raw form, so the key is prepended back
    in little-endian order. When several companies are present, the Wave Plus
    entry wins; otherwise the first one is used.
    """
    entries = [
        company_id.to_bytes(2, "little") + bytes(payload)
        for company_id, payload in (adv.manufacturer_data or {}).items()
    ]
    for entry in entries:
        if entry[: len(WAVE_PLUS_SIGNATURE)] == WAVE_PLUS_SIGNATURE:
            return entry
    return entries[0] if entries else b""


def _to_advertisement(dev: BLEDevice, adv: AdvertisementData) -> Advertisement:
    # bleak does not report the connectable flag on every backend; devices it
    # surfaces through discovery are treated as connectable.
    return Advertisement(
        address=dev.address,
        connectable=True,
        manufacturer_data=manufacturer_data_from_bleak(adv),
        rssi=adv.rssi,
        name=adv.local_name or dev.name,
    )


class BleakConnection(Connection):
    """:class:`Connection` backed by a connected :class:`BleakClient`."""

    def __init__(self, client: BleakClient, disconnected: asyncio.Event) -> None:
        self._client = client
        self._disconnected = disconnected
        self._service = None
        self._characteristic = None

    @property
    def address(self) -> str:
        return self._client.address

    async def discover_service(self, uuid: str) -> bool:
        # bleak resolves the GATT table during connect(); lookups are local.
        self._service = self._client.services.get_service(uuid)
        return self._service is not None

    async def discover_characteristic(self, uuid: str) -> bool:
        if self._service is None:
            return False
        self._characteristic = self._service.get_characteristic(uuid)
        return self._characteristic is not None

    async def read_characteristic(self) -> bytes:
        if self._characteristic is None:
            raise BleakError("No characteristic selected")
        data = await self._client.read_gatt_char(self._characteristic)
        return bytes(data)

    async def disconnect(self) -> None:
        if self._disconnected.is_set():
            return
        await self._client.disconnect()

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()


class BleakRadioAdapter(RadioAdapter):
    """Real BLE controller driven through bleak.

    bleak has no explicit device handle, so opening and closing the device
    power-cycles the controller with ``bluetoothctl`` (BlueZ) when
    ``power_cycle`` is enabled. Hosts without ``bluetoothctl`` keep running
    with a warning.

    Args:
        adapter: Optional controller name passed to bleak (e.g. ``"hci0"``).
        power_cycle: Whether open/close power the controller on and off.
    """

    def __init__(self, adapter: Optional[str] = None, power_cycle: bool = True):
        self._adapter = adapter
        self._power_cycle = power_cycle

    def _bleak_kwargs(self) -> dict[str, str]:
        return {"adapter": self._adapter} if self._adapter else {}

    async def _bluetoothctl(self, *args: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                "bluetoothctl",
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.warning("bluetoothctl not found, skipping: %s", " ".join(args))
            return
        except OSError as e:
            logger.warning("Cannot run bluetoothctl %s: %s", " ".join(args), e)
            return
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=10)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("bluetoothctl %s timed out", " ".join(args))
            return
        if proc.returncode != 0:
            logger.warning(
                "bluetoothctl %s exited with %d: %s",
                " ".join(args),
                proc.returncode,
                (stderr or stdout).decode(errors="replace").strip(),
            )
        else:
            logger.debug("bluetoothctl %s: ok", " ".join(args))

    async def open_device(self) -> None:
        if self._power_cycle:
            await self._bluetoothctl("power", "on")
        logger.info("Radio device open (adapter=%s)", self._adapter or "default")

    async def close_device(self) -> None:
        if self._power_cycle:
            await self._bluetoothctl("power", "off")
        logger.info("Radio device closed")

    async def scan(
        self, duration: float, predicate: AdvertisementFilter
    ) -> list[Advertisement]:
        # Bleak 0.22+ only returns advertisement data with return_adv=True.
        try:
            devices_adv = await BleakScanner.discover(
                timeout=duration, return_adv=True, **self._bleak_kwargs()
            )
        except BleakError as e:
            logger.error(
                "BLE scan failed (%s). Check that the controller is powered "
                "(bluetoothctl show), bluetoothd is running and this user may "
                "access it.",
                e,
            )
            raise
        logger.debug("Scan completed: %d devices seen", len(devices_adv))

        matches = []
        for dev, adv in devices_adv.values():
            advertisement = _to_advertisement(dev, adv)
            logger.debug(
                "Device discovered: addr=%s name=%s rssi=%s mfr=%s",
                advertisement.address,
                advertisement.name,
                advertisement.rssi,
                advertisement.manufacturer_data.hex(),
            )
            if predicate(advertisement):
                matches.append(advertisement)
        return matches

    async def connect(self, address: str, timeout: float) -> Connection:
        disconnected = asyncio.Event()

        # The peripheral may drop the link on its own; the callback records it
        # so teardown can tell whether confirmation is still outstanding.
        def on_disconnect(_: BleakClient) -> None:
            logger.debug("Disconnected callback: %s", address)
            disconnected.set()

        client = BleakClient(
            address,
            disconnected_callback=on_disconnect,
            timeout=timeout,
            **self._bleak_kwargs(),
        )
        await client.connect()
        if not client.is_connected:
            raise BleakError(f"Connection to {address} failed")
        return BleakConnection(client, disconnected)


@dataclass
class MockSensor:
    """Synthetic sensor state for :class:`MockRadioAdapter`."""

    serial_number: int
    address: str
    phase: float = 0.0

    def manufacturer_data(self) -> bytes:
        return (
            WAVE_PLUS_SIGNATURE
            + self.serial_number.to_bytes(4, "little")
            + b"\x09\x00\x00\x00"
        )

    def values(self, elapsed: float) -> SensorValues:
        # Slow sinusoidal drift with noise, clamped to the frame's raw ranges.
        t = elapsed + self.phase
        return SensorValues(
            humidity=max(0.0, min(100.0, 45.0 + 5.0 * math.sin(t / 600.0))),
            radon_short=max(0, int(80 + 30 * math.sin(t / 900.0) + random.gauss(0, 5))),
            radon_long=max(0, int(75 + 5 * math.sin(t / 7200.0))),
            temperature=max(0.0, 21.0 + 2.0 * math.sin(t / 1800.0) + random.gauss(0, 0.1)),
            pressure=1000.0 + 8.0 * math.sin(t / 3600.0),
            co2=float(max(0, int(650 + 150 * math.sin(t / 1200.0) + random.gauss(0, 10)))),
            voc=float(max(0, int(120 + 40 * math.sin(t / 1500.0) + random.gauss(0, 5)))),
        )


class _MockConnection(Connection):
    def __init__(self, sensor: MockSensor, start_time: float) -> None:
        self._sensor = sensor
        self._start_time = start_time
        self._disconnected = asyncio.Event()
        self._selected: list[str] = []

    @property
    def address(self) -> str:
        return self._sensor.address

    async def discover_service(self, uuid: str) -> bool:
        self._selected = [uuid]
        return uuid == SENSOR_SERVICE_UUID

    async def discover_characteristic(self, uuid: str) -> bool:
        self._selected.append(uuid)
        return self._selected == [SENSOR_SERVICE_UUID, SENSOR_CHARACTERISTIC_UUID]

    async def read_characteristic(self) -> bytes:
        await asyncio.sleep(0.05)
        return encode_frame(self._sensor.values(time.time() - self._start_time))

    async def disconnect(self) -> None:
        self._disconnected.set()

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()


class MockRadioAdapter(RadioAdapter):
    """Synthetic radio exposing a fixed set of Wave Plus sensors.

    Args:
        serial_numbers: Serials of the simulated sensors.
        failure_rate: Probability in [0, 1] that a connect attempt fails,
            to exercise retry handling.
    """

    def __init__(
        self,
        serial_numbers: Iterable[int] = (2930012345, 2930067890),
        failure_rate: float = 0.1,
    ) -> None:
        self._sensors = [
            MockSensor(
                serial_number=serial,
                address=f"AA:BB:CC:{(serial >> 16) & 0xFF:02X}:{(serial >> 8) & 0xFF:02X}:{serial & 0xFF:02X}",
                phase=random.uniform(0, 3600),
            )
            for serial in serial_numbers
        ]
        self._failure_rate = failure_rate
        self._start_time = time.time()
        self._open = False

    async def open_device(self) -> None:
        self._open = True
        logger.info("Mock radio open with %d sensors", len(self._sensors))

    async def close_device(self) -> None:
        self._open = False
        logger.info("Mock radio closed")

    async def scan(
        self, duration: float, predicate: AdvertisementFilter
    ) -> list[Advertisement]:
        await asyncio.sleep(duration)
        advertisements = [
            Advertisement(
                address=sensor.address,
                connectable=True,
                manufacturer_data=sensor.manufacturer_data(),
                rssi=int(random.gauss(-70, 5)),
                name="Airthings Wave+",
            )
            for sensor in self._sensors
        ]
        return [a for a in advertisements if predicate(a)]

    async def connect(self, address: str, timeout: float) -> Connection:
        await asyncio.sleep(0.1)
        if not self._open:
            raise BleakError("Mock radio is closed")
        if random.random() < self._failure_rate:
            raise asyncio.TimeoutError(f"Simulated connect timeout: {address}")
        for sensor in self._sensors:
            if sensor.address.upper() == address.upper():
                return _MockConnection(sensor, self._start_time)
        raise BleakError(f"Device with address {address} was not found")
