"""Receiver configuration.

All values are supplied once at start-up (CLI flags) and never reloaded.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReceiverConfig:
    """Timing and retry settings for the acquisition loop.

    Attributes:
        scan_duration: Seconds per advertisement scan. Also bounds each
            connect attempt. Default 4s is enough for Wave Plus units, which
            advertise roughly once per second.
        read_interval: Seconds to wait after a successful read cycle before
            scanning again.
        retries: Attempts per scan and per sensor read.
        operation_timeout: Seconds allowed for each GATT discover/read and
            for the disconnect confirmation.
        cooldown_delay: Seconds to wait after reopening the radio device
            following a failed cycle.
        pulse_interval: Seconds between watchdog liveness pulses.
        watchdog_minimum: Lower bound in seconds for the fatal watchdog
            threshold.
        watchdog_multiplier: Number of (read_interval + scan_duration) periods
            without a successful read before the watchdog fires, unless
            ``watchdog_minimum`` is larger.
    """

    scan_duration: float = 4.0
    read_interval: float = 60.0
    retries: int = 3
    operation_timeout: float = 10.0
    cooldown_delay: float = 5.0
    pulse_interval: float = 10.0
    watchdog_minimum: float = 300.0
    watchdog_multiplier: int = 5

    def __post_init__(self) -> None:
        for name in (
            "scan_duration",
            "operation_timeout",
            "pulse_interval",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("read_interval", "cooldown_delay", "watchdog_minimum"):
            if getattr(self, name) < 0:
                raise ValueError(
                    f"{name} must not be negative, got {getattr(self, name)}"
                )
        if self.retries < 1:
            raise ValueError(f"retries must be >= 1, got {self.retries}")
        if self.watchdog_multiplier < 1:
            raise ValueError(
                f"watchdog_multiplier must be >= 1, got {self.watchdog_multiplier}"
            )

    @property
    def watchdog_threshold(self) -> float:
        """Seconds without a successful read after which the process exits."""
        return max(
            self.watchdog_minimum,
            self.watchdog_multiplier * (self.read_interval + self.scan_duration),
        )
