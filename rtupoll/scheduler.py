"""
Polling Scheduler
Cycles through the device list on a fixed cadence until shutdown
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .config import Settings
from .devices import DeviceSpec
from .exceptions import RtuPollError
from .formatter import format_result
from .rtu.client import RtuClient
from .rtu.transport import SerialSession
from .sink import ResultSink

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class RoundStats:
    """Outcome of one pass over the device list"""

    round_number: int
    polled: int = 0
    succeeded: int = 0
    failed: int = 0
    duration: float = 0.0


def serial_session_factory(settings: Settings) -> Callable[[DeviceSpec], SerialSession]:
    """Return a factory opening a SerialSession configured for a device"""
    def open_session(device: DeviceSpec) -> SerialSession:
        return SerialSession.open(
            device.port,
            baudrate=device.baudrate,
            bytesize=device.bytesize,
            parity=device.parity,
            stopbits=device.stopbits,
            read_timeout=settings.read_timeout,
            rs485_delay=settings.rs485_delay,
        )
    return open_session


class PollingScheduler:
    """
    Polls every configured device in order, round after round

    Devices are polled strictly one after another; a failure on one device is
    logged and never stops the round. Between rounds the scheduler waits on
    the stop event, so a shutdown request ends the wait immediately. An
    exchange already in flight is allowed to finish.
    """

    def __init__(self,
                 devices: Sequence[DeviceSpec],
                 sink: ResultSink,
                 settings: Optional[Settings] = None,
                 client: Optional[RtuClient] = None,
                 session_factory: Optional[Callable[[DeviceSpec], SerialSession]] = None,
                 stop_event: Optional[threading.Event] = None,
                 max_rounds: Optional[int] = None):
        """
        Args:
            devices: Devices to poll, in polling order
            sink: Destination for formatted results
            settings: Interval, timeouts, retries and labels (default: Settings())
            client: RTU client (default: built from settings, sharing stop_event)
            session_factory: Opens a session for a device (default: serial port)
            stop_event: Shutdown token (default: a new Event)
            max_rounds: Stop after this many rounds (default: run until stopped)
        """
        self.devices: List[DeviceSpec] = list(devices)
        self.sink = sink
        self.settings = settings if settings is not None else Settings()
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.client = client if client is not None else RtuClient(
            max_attempts=self.settings.max_attempts,
            cancel=self.stop_event,
        )
        self.session_factory = (session_factory if session_factory is not None
                                else serial_session_factory(self.settings))
        self.max_rounds = max_rounds
        self.rounds_completed = 0
        self.last_round: Optional[RoundStats] = None
        self._state = SchedulerState.IDLE

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> float:
        return self.settings.interval

    def stop(self) -> None:
        """Request a graceful shutdown"""
        self.stop_event.set()

    def _drain(self, reason: str) -> None:
        if self._state is SchedulerState.POLLING:
            logger.info(f"Shutdown requested ({reason}), draining")
            self._state = SchedulerState.DRAINING

    def run(self) -> None:
        """Poll until stopped or until max_rounds rounds have completed"""
        self._state = SchedulerState.POLLING
        logger.info(
            f"Polling {len(self.devices)} device(s) every {self.interval:.1f}s"
        )
        try:
            while True:
                if self.stop_event.is_set():
                    self._drain("before round")
                    break

                self.run_round()

                if self.stop_event.is_set():
                    self._drain("after round")
                    break
                if self.max_rounds is not None and self.rounds_completed >= self.max_rounds:
                    break
                # Cancellation point: returns True as soon as stop is requested
                if self.stop_event.wait(self.interval):
                    self._drain("during delay")
                    break
        finally:
            self._state = SchedulerState.STOPPED
            logger.info(f"Scheduler stopped after {self.rounds_completed} round(s)")

    def run_round(self) -> RoundStats:
        """Poll every device once, in list order"""
        stats = RoundStats(round_number=self.rounds_completed + 1)
        started = time.monotonic()

        for device in self.devices:
            if self.stop_event.is_set():
                self._drain("between devices")
                break
            stats.polled += 1
            if self.poll_device(device):
                stats.succeeded += 1
            else:
                stats.failed += 1

        stats.duration = time.monotonic() - started
        self.rounds_completed += 1
        self.last_round = stats
        logger.info(
            f"Round {stats.round_number}: {stats.succeeded}/{stats.polled} device(s) ok, "
            f"{stats.failed} failed in {stats.duration:.2f}s"
        )
        return stats

    def labels_for(self, device: DeviceSpec):
        """Sink labels for a device: configured texts, else port and slave address"""
        label1 = self.settings.label1 if self.settings.label1 is not None else device.port
        label2 = self.settings.label2 if self.settings.label2 is not None else str(device.slave)
        return label1, label2

    def poll_device(self, device: DeviceSpec) -> bool:
        """
        Open a session, read the device, format and store the result

        Returns:
            bool: True if a record reached the sink
        """
        try:
            with self.session_factory(device) as session:
                result = self.client.read_device(session, device)
                formatted = format_result(result)
                label1, label2 = self.labels_for(device)
                self.sink.write(label1, label2, str(device.start_address), formatted)
        except RtuPollError as e:
            logger.error(f"Error polling {device.describe()}: {type(e).__name__}: {e}")
            return False
        except Exception:
            logger.exception(f"Unexpected error polling {device.describe()}")
            return False

        logger.debug(f"Polled {device.describe()}: {formatted}")
        return True
