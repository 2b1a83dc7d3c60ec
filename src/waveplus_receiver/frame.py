"""Wave Plus telemetry frame codec.

The sensor characteristic returns a fixed 20-byte little-endian record::

    offset  size  field
    0       1     reserved
    1       1     humidity        raw / 2.0   -> %RH
    2       1     reserved
    3       1     reserved
    4       2     radon short     Bq/m3, verbatim
    6       2     radon long      Bq/m3, verbatim
    8       2     temperature     raw / 100.0 -> degC
    10      2     pressure        raw / 50.0  -> hPa
    12      2     CO2             ppm, verbatim
    14      2     VOC             ppb, verbatim
    16      2     reserved
    18      2     reserved

Reserved fields are unpacked with the rest of the record and dropped so that
every offset stays aligned with the layout above.
"""

from __future__ import annotations

import struct
from dataclasses import asdict, dataclass
from typing import Any

from .errors import MalformedFrame

FRAME_FORMAT = "<BBBBHHHHHHHH"
FRAME_LENGTH = struct.calcsize(FRAME_FORMAT)

_FRAME = struct.Struct(FRAME_FORMAT)


@dataclass(frozen=True)
class SensorValues:
    """One decoded measurement set from a Wave Plus sensor.

    Instances are immutable and handed to the sink as-is right after decoding.

    Attributes:
        humidity: Relative humidity in %.
        radon_short: Short-term radon average in Bq/m3 (unsigned 16-bit).
        radon_long: Long-term radon average in Bq/m3 (unsigned 16-bit).
        temperature: Temperature in degrees Celsius.
        pressure: Atmospheric pressure in hPa.
        co2: CO2 level in ppm.
        voc: VOC level in ppb.
    """

    humidity: float
    radon_short: int
    radon_long: int
    temperature: float
    pressure: float
    co2: float
    voc: float

    @staticmethod
    def from_frame(data: bytes) -> "SensorValues":
        """Decode a raw characteristic value. See :func:`decode_frame`."""
        return decode_frame(data)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def decode_frame(data: bytes) -> SensorValues:
    """Decode a Wave Plus telemetry frame into physical units.

    Args:
        data: Characteristic value as read from the device. Only the first
            ``FRAME_LENGTH`` bytes are interpreted.

    Returns:
        SensorValues with unit conversions applied.

    Raises:
        MalformedFrame: If ``data`` is shorter than ``FRAME_LENGTH`` bytes.
            Nothing is decoded from a short frame.
    """
    if len(data) < FRAME_LENGTH:
        raise MalformedFrame(
            f"Expected {FRAME_LENGTH} bytes, got {len(data)}: {bytes(data).hex()}"
        )

    (
        _reserved0,
        humidity,
        _reserved2,
        _reserved3,
        radon_short,
        radon_long,
        temperature,
        pressure,
        co2,
        voc,
        _reserved16,
        _reserved18,
    ) = _FRAME.unpack_from(data)

    return SensorValues(
        humidity=humidity / 2.0,
        radon_short=radon_short,
        radon_long=radon_long,
        temperature=temperature / 100.0,
        pressure=pressure / 50.0,
        co2=float(co2),
        voc=float(voc),
    )


def encode_frame(values: SensorValues) -> bytes:
    """Build a raw frame carrying ``values``.

    Used by the mock radio to emit frames a real device would send. Values
    are rounded to the nearest raw unit; reserved fields are zero.
    """
    return _FRAME.pack(
        0,
        int(round(values.humidity * 2.0)),
        0,
        0,
        values.radon_short,
        values.radon_long,
        int(round(values.temperature * 100.0)),
        int(round(values.pressure * 50.0)),
        int(round(values.co2)),
        int(round(values.voc)),
        0,
        0,
    )
