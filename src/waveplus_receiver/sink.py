"""Destinations for decoded sensor readings."""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, TextIO

from .frame import SensorValues

logger = logging.getLogger(__name__)

CSV_HEADER = "timestamp,serial,humidity,radon_short,radon_long,temperature,pressure,co2,voc"


class Sink(ABC):
    """Receives every successfully decoded reading.

    ``publish`` is called from the acquisition loop and must return quickly.
    Exceptions raised by a sink are logged by the loop and otherwise ignored.
    """

    @abstractmethod
    def publish(self, serial_number: str, values: SensorValues) -> None:
        pass


class CsvSink(Sink):
    """Writes one CSV line per reading, to stdout by default.

    Output precision is fixed so downstream tools can parse it regardless of
    float formatting.
    """

    def __init__(self, stream: Optional[TextIO] = None, show_header: bool = True):
        self._stream = stream or sys.stdout
        self._header_pending = show_header

    def format_row(
        self, serial_number: str, values: SensorValues, timestamp: datetime
    ) -> str:
        return (
            f"{timestamp.isoformat(timespec='seconds')},{serial_number},"
            f"{values.humidity:.1f},{values.radon_short},{values.radon_long},"
            f"{values.temperature:.2f},{values.pressure:.2f},"
            f"{values.co2:.0f},{values.voc:.0f}"
        )

    def publish(self, serial_number: str, values: SensorValues) -> None:
        if self._header_pending:
            print(CSV_HEADER, file=self._stream, flush=True)
            self._header_pending = False
        line = self.format_row(serial_number, values, datetime.now(timezone.utc))
        logger.debug("CSV output: %s", line)
        print(line, file=self._stream, flush=True)


class LoggingSink(Sink):
    """Logs readings at INFO level instead of writing them anywhere."""

    def publish(self, serial_number: str, values: SensorValues) -> None:
        logger.info(
            "Wave Plus %s: humidity=%.1f%%rH radon=%d/%d Bq/m3 temp=%.2fC "
            "pressure=%.2fhPa co2=%.0fppm voc=%.0fppb",
            serial_number,
            values.humidity,
            values.radon_short,
            values.radon_long,
            values.temperature,
            values.pressure,
            values.co2,
            values.voc,
        )
