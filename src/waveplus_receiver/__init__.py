from __future__ import annotations

import argparse
import logging
import sys

from .acquisition import run
from .config import ReceiverConfig

logger = logging.getLogger(__name__)

_DEFAULTS = ReceiverConfig()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="waveplus-receiver",
        description="Continuously read Airthings Wave Plus sensors over BLE and stream the readings as CSV to stdout.",
    )
    parser.add_argument(
        "--scan-duration",
        type=float,
        default=_DEFAULTS.scan_duration,
        help=f"scan duration and connect timeout in seconds (default: {_DEFAULTS.scan_duration})",
    )
    parser.add_argument(
        "--read-interval",
        type=float,
        default=_DEFAULTS.read_interval,
        help=f"seconds between read cycles (default: {_DEFAULTS.read_interval})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=_DEFAULTS.retries,
        help=f"attempts per scan and per sensor read (default: {_DEFAULTS.retries})",
    )
    parser.add_argument(
        "--operation-timeout",
        type=float,
        default=_DEFAULTS.operation_timeout,
        help=f"timeout in seconds for each GATT operation (default: {_DEFAULTS.operation_timeout})",
    )
    parser.add_argument(
        "--cooldown",
        type=float,
        default=_DEFAULTS.cooldown_delay,
        help=f"seconds to wait after a failed cycle before rescanning (default: {_DEFAULTS.cooldown_delay})",
    )
    parser.add_argument(
        "--pulse-interval",
        type=float,
        default=_DEFAULTS.pulse_interval,
        help=f"watchdog pulse interval in seconds (default: {_DEFAULTS.pulse_interval})",
    )
    parser.add_argument(
        "--watchdog-min",
        type=float,
        default=_DEFAULTS.watchdog_minimum,
        help=f"minimum seconds without a successful read before exiting (default: {_DEFAULTS.watchdog_minimum})",
    )
    parser.add_argument(
        "--watchdog-multiplier",
        type=int,
        default=_DEFAULTS.watchdog_multiplier,
        help="exit after this many (read interval + scan duration) periods without a "
        f"successful read, if longer than --watchdog-min (default: {_DEFAULTS.watchdog_multiplier})",
    )
    parser.add_argument(
        "--adapter",
        default=None,
        help="Bluetooth controller to use, e.g. hci0 (default: system default)",
    )
    parser.add_argument(
        "--no-power-cycle",
        action="store_true",
        help="do not power-cycle the controller with bluetoothctl when recovering",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="also write logs to this file (default: stderr only)",
    )
    parser.add_argument(
        "--no-header",
        action="store_true",
        help="do not print the CSV header line",
    )
    parser.add_argument(
        "--log-only",
        action="store_true",
        help="log readings instead of writing CSV to stdout",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="use simulated sensors (no Bluetooth hardware required)",
    )

    args = parser.parse_args()

    # CSV goes to stdout; logs go to stderr and optionally a file
    level = getattr(logging, str(args.log_level).upper(), logging.WARNING)
    if args.log_only:
        # readings are logged at INFO
        level = min(level, logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if args.log_file:
        try:
            handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {args.log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    try:
        config = ReceiverConfig(
            scan_duration=args.scan_duration,
            read_interval=args.read_interval,
            retries=args.retries,
            operation_timeout=args.operation_timeout,
            cooldown_delay=args.cooldown,
            pulse_interval=args.pulse_interval,
            watchdog_minimum=args.watchdog_min,
            watchdog_multiplier=args.watchdog_multiplier,
        )
    except ValueError as e:
        parser.error(str(e))

    from .radio import BleakRadioAdapter, MockRadioAdapter, RadioAdapter
    from .sink import CsvSink, LoggingSink, Sink

    adapter: RadioAdapter
    if args.mock:
        logger.info("Using simulated Wave Plus sensors (no BLE device required)")
        adapter = MockRadioAdapter()
    else:
        adapter = BleakRadioAdapter(
            adapter=args.adapter, power_cycle=not args.no_power_cycle
        )

    sink: Sink
    if args.log_only:
        sink = LoggingSink()
    else:
        sink = CsvSink(show_header=not args.no_header)

    raise SystemExit(run(config, adapter, sink))
