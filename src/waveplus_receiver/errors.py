"""Exception hierarchy for the Wave Plus receiver.

Every failure the acquisition pipeline can classify derives from
:class:`WavePlusError`. Radio-stack exceptions (``BleakError``, timeouts) are
not wrapped at the point they occur; they surface as the ``__cause__`` of
:class:`ScanExhausted` / :class:`ReceiveExhausted` once a retry budget is spent.
"""

from __future__ import annotations


class WavePlusError(Exception):
    """Base exception for the Wave Plus receiver."""

    pass


class MalformedFrame(WavePlusError):
    """Telemetry frame is too short to contain every field."""

    pass


class InvalidAdvertisement(WavePlusError):
    """Manufacturer payload is too short to carry a serial number."""

    pass


class CharacteristicNotFound(WavePlusError):
    """Connected device does not expose the telemetry service or characteristic."""

    pass


class Cancelled(WavePlusError):
    """A radio operation was abandoned because shutdown was requested."""

    pass


class RetriesExhausted(WavePlusError):
    """Every attempt of a retried operation failed.

    Attributes:
        attempts: Number of attempts that were made before giving up.
    """

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ScanExhausted(RetriesExhausted):
    """All scan attempts failed."""

    pass


class ReceiveExhausted(RetriesExhausted):
    """All connect/read attempts for a single sensor failed."""

    pass


class WatchdogExpired(WavePlusError):
    """No sensor has been read successfully within the liveness threshold."""

    def __init__(self, elapsed: float, threshold: float) -> None:
        super().__init__(
            f"no successful read for {elapsed:.0f}s (threshold {threshold:.0f}s)"
        )
        self.elapsed = elapsed
        self.threshold = threshold
