"""Advertisement filtering and serial-number resolution for Wave Plus sensors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import InvalidAdvertisement

if TYPE_CHECKING:
    from .radio import Advertisement

# Airthings company identifier 0x0334, little-endian as it appears on air.
WAVE_PLUS_SIGNATURE = b"\x34\x03"

MIN_MANUFACTURER_DATA = 6


def resolve_serial_number(manufacturer_data: bytes) -> str:
    """Derive the device serial number from its manufacturer-specific data.

    Bytes 2-5 carry the serial number as an unsigned 32-bit little-endian
    integer. The link address is not involved, so the same physical sensor
    keeps its identity when its BLE address rotates.

    Two units broadcasting identical bytes 2-5 resolve to the same serial;
    the protocol gives no way to tell them apart.

    Raises:
        InvalidAdvertisement: If fewer than 6 bytes are available.
    """
    if len(manufacturer_data) < MIN_MANUFACTURER_DATA:
        raise InvalidAdvertisement(
            f"Manufacturer data too short ({len(manufacturer_data)} bytes): "
            f"{bytes(manufacturer_data).hex()}"
        )
    return str(int.from_bytes(manufacturer_data[2:6], "little", signed=False))


def is_wave_plus(advertisement: Advertisement) -> bool:
    """Return True for connectable advertisements carrying the Wave Plus signature."""
    if not advertisement.connectable:
        return False
    data = advertisement.manufacturer_data
    return (
        len(data) >= MIN_MANUFACTURER_DATA
        and data[: len(WAVE_PLUS_SIGNATURE)] == WAVE_PLUS_SIGNATURE
    )
