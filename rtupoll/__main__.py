"""
rtupoll - Main entry point for running as a module
"""

import argparse
import logging
import signal
import sys
import threading

from . import load_env_files
from .config import FUNCTION_NAMES, Settings
from .devices import load_devices
from .exceptions import ConfigError, SinkError
from .scheduler import PollingScheduler
from .sink import LogResultSink, SqlResultSink

# Configure logging
logger = logging.getLogger(__name__)

# How often the main thread checks on the worker
JOIN_INTERVAL = 0.5


def install_signal_handlers(stop_event: threading.Event) -> None:
    """
    Translate SIGINT/SIGTERM into a graceful shutdown request

    The first signal sets the stop event; the handler then restores the
    default action, so a second Ctrl+C terminates the process immediately.
    """
    def signal_handler(signum, frame):
        name = signal.Signals(signum).name
        if not stop_event.is_set():
            logger.warning(f"Received {name}, stopping after the current device...")
            stop_event.set()
        signal.signal(signum, signal.SIG_DFL)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, signal_handler)


def build_settings(args) -> Settings:
    """Environment settings with command-line overrides applied"""
    return Settings.from_env().override(
        interval=args.interval,
        read_timeout=args.timeout,
        max_attempts=args.retries,
        database_url=args.database_url,
        table=args.table,
        label1=args.label1,
        label2=args.label2,
    )


def run_poller(args) -> int:
    """Load the device list and poll it until interrupted"""
    try:
        settings = build_settings(args)
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 1
    try:
        devices = load_devices(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1
    if not devices:
        logger.error(f"No valid devices in {args.config}")
        return 1

    try:
        sink = LogResultSink() if args.dry_run else SqlResultSink(settings.database_url, settings.table)
    except SinkError as e:
        logger.error(str(e))
        return 1
    stop_event = threading.Event()
    scheduler = PollingScheduler(
        devices,
        sink,
        settings=settings,
        stop_event=stop_event,
        max_rounds=1 if args.once else None,
    )

    install_signal_handlers(stop_event)
    worker = threading.Thread(target=scheduler.run, name="rtupoll-scheduler", daemon=True)
    worker.start()
    try:
        # Wait for either the worker to finish or a shutdown request to drain it
        while worker.is_alive():
            worker.join(JOIN_INTERVAL)
    finally:
        sink.close()

    if stop_event.is_set():
        logger.info("Poller stopped")
    return 0


def check_config(args) -> int:
    """Validate the device list and print the accepted entries"""
    try:
        devices = load_devices(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    for index, device in enumerate(devices, start=1):
        print(f"{index:3d}. {device.port} {device.baudrate} {device.bytesize}{device.parity}"
              f"{device.stopbits:g} slave={device.slave} "
              f"{FUNCTION_NAMES[device.function_code]} start={device.start_address} "
              f"count={device.count}")
    print(f"{len(devices)} valid device(s)")
    return 0 if devices else 1


def main(argv=None):
    """Main entry point for the rtupoll module"""
    # Load environment variables
    load_env_files()

    # Parse command line arguments
    parser = argparse.ArgumentParser(description='rtupoll - Modbus RTU device poller')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Poll command
    run_parser = subparsers.add_parser('run', help='Poll the configured devices until interrupted')
    run_parser.add_argument('config', help='Path to the device list CSV file')
    run_parser.add_argument('--interval', type=float, help='Delay between rounds in seconds')
    run_parser.add_argument('--timeout', type=float, help='Response timeout in seconds')
    run_parser.add_argument('--retries', type=int, help='Attempts per request (first try included)')
    run_parser.add_argument('--database-url', help='SQLAlchemy database URL')
    run_parser.add_argument('--table', help='Table receiving the results')
    run_parser.add_argument('--label1', help='Text stored in the first column')
    run_parser.add_argument('--label2', help='Text stored in the second column')
    run_parser.add_argument('--dry-run', action='store_true', help='Log results instead of storing them')
    run_parser.add_argument('--once', action='store_true', help='Poll a single round and exit')

    # Check command
    check_parser = subparsers.add_parser('check', help='Validate the device list')
    check_parser.add_argument('config', help='Path to the device list CSV file')

    args = parser.parse_args(argv)

    # Run the selected command
    if args.command == 'run':
        return run_poller(args)
    elif args.command == 'check':
        return check_config(args)
    else:
        # Default to help if no command specified
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
