"""
Serial Transport Session
Owns one serial port for the duration of a single device poll
"""

import logging
import threading
import time
from typing import Callable, Optional

import serial

from rtupoll.config import DEFAULT_READ_TIMEOUT, DEFAULT_RS485_DELAY, RECEIVE_POLL_INTERVAL
from rtupoll.exceptions import ResponseTimeoutError, TransportError

logger = logging.getLogger(__name__)


def frame_gap(baudrate: int, bytesize: int = 8, parity: str = serial.PARITY_NONE,
              stopbits: float = serial.STOPBITS_ONE) -> float:
    """
    Silent interval that delimits RTU frames (3.5 character times)

    Above 19200 baud the Modbus serial line guide fixes it at 1.75 ms.
    """
    if baudrate > 19200:
        return 0.00175
    bits_per_char = 1 + bytesize + (0 if parity == serial.PARITY_NONE else 1) + stopbits
    return 3.5 * bits_per_char / baudrate


class SerialSession:
    """
    One open serial connection to a Modbus RTU bus

    Use as a context manager so the port is closed on every exit path:

        with SerialSession.open('/dev/ttyUSB0', 9600) as session:
            session.send(request)
            response = session.receive()
    """

    def __init__(self,
                 port: str,
                 baudrate: int = 9600,
                 bytesize: int = serial.EIGHTBITS,
                 parity: str = serial.PARITY_NONE,
                 stopbits: float = serial.STOPBITS_ONE,
                 timeout: float = DEFAULT_READ_TIMEOUT,
                 rs485_delay: float = DEFAULT_RS485_DELAY):
        """
        Args:
            port: Serial port path (e.g. /dev/ttyUSB0, COM3)
            baudrate: Baud rate
            bytesize: Data bits
            parity: pyserial parity constant
            stopbits: pyserial stop bits constant
            timeout: Default receive bound in seconds
            rs485_delay: Minimum bus silence before sending
        """
        self.port = port
        self.baudrate = baudrate
        self.bytesize = bytesize
        self.parity = parity
        self.stopbits = stopbits
        self.timeout = timeout
        self.serial_conn: Optional[serial.Serial] = None
        self.inter_frame_delay = max(frame_gap(baudrate, bytesize, parity, stopbits), rs485_delay)
        self._last_activity = 0.0

    @classmethod
    def open(cls, port: str, baudrate: int = 9600, bytesize: int = serial.EIGHTBITS,
             parity: str = serial.PARITY_NONE, stopbits: float = serial.STOPBITS_ONE,
             read_timeout: float = DEFAULT_READ_TIMEOUT,
             rs485_delay: float = DEFAULT_RS485_DELAY) -> "SerialSession":
        """
        Create a session and open its port

        Raises:
            TransportError: Port busy, missing or not permitted
        """
        session = cls(port, baudrate, bytesize, parity, stopbits, read_timeout, rs485_delay)
        session.connect()
        return session

    def connect(self) -> None:
        """Open the serial port"""
        if self.is_connected():
            return
        try:
            # Non-blocking reads; receive() polls in_waiting itself
            self.serial_conn = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=0,
                write_timeout=self.timeout,
            )
            if not self.serial_conn.is_open:
                self.serial_conn.open()
        except (serial.SerialException, OSError, ValueError) as e:
            self.serial_conn = None
            raise TransportError(f"Failed to open serial port: {e}", self.port) from e
        self._last_activity = time.monotonic()
        logger.info(f"Serial port {self.port} connected at {self.baudrate} baud")

    def is_connected(self) -> bool:
        return self.serial_conn is not None and self.serial_conn.is_open

    def close(self) -> None:
        """Close the port; safe to call repeatedly"""
        conn, self.serial_conn = self.serial_conn, None
        if conn is None:
            return
        try:
            conn.close()
        except (serial.SerialException, OSError) as e:
            logger.warning(f"Error closing {self.port}: {e}")
        logger.info(f"Serial port {self.port} disconnected")

    def __enter__(self):
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _require_connection(self) -> serial.Serial:
        if not self.is_connected():
            raise TransportError("Serial port is not open", self.port)
        return self.serial_conn

    def _enforce_rs485_delay(self) -> None:
        """
        Keep the bus silent for the inter-frame gap before transmitting,
        so the slave sees the request as a new frame.
        """
        elapsed = time.monotonic() - self._last_activity
        delay_needed = self.inter_frame_delay - elapsed
        if delay_needed > 0:
            time.sleep(delay_needed)

    def send(self, data: bytes) -> None:
        """
        Transmit one request frame

        Raises:
            TransportError: Write failed
        """
        conn = self._require_connection()
        self._enforce_rs485_delay()
        try:
            # Drop leftovers of an earlier, late response
            conn.reset_input_buffer()
            logger.debug(f"{self.port} TX: {data.hex()}")
            conn.write(data)
            conn.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write failed: {e}", self.port) from e
        finally:
            self._last_activity = time.monotonic()

    def receive(self,
                max_wait: Optional[float] = None,
                is_complete: Optional[Callable[[bytes], bool]] = None,
                cancel: Optional[threading.Event] = None) -> bytes:
        """
        Read one response frame

        Reading stops as soon as is_complete(buffer) is true, when the line
        stays silent for the inter-frame gap after data has arrived, or when
        max_wait elapses.

        Args:
            max_wait: Receive bound in seconds (default: session timeout)
            is_complete: Predicate telling whether the buffer holds a whole frame
            cancel: Shutdown token; honoured only while no byte has arrived

        Returns:
            bytes: Received frame (possibly truncated if the bound was hit mid-frame)

        Raises:
            ResponseTimeoutError: Nothing arrived in time
            TransportError: Read failed
        """
        conn = self._require_connection()
        wait = self.timeout if max_wait is None else max_wait
        start = time.monotonic()
        deadline = start + wait
        response = bytearray()
        last_byte_at = start

        try:
            while True:
                now = time.monotonic()
                waiting = conn.in_waiting
                if waiting:
                    chunk = conn.read(waiting)
                    response.extend(chunk)
                    last_byte_at = now
                    if is_complete is not None and is_complete(bytes(response)):
                        break
                elif response and now - last_byte_at >= self.inter_frame_delay and is_complete is None:
                    break
                elif not response and cancel is not None and cancel.is_set():
                    logger.debug(f"{self.port} receive cancelled before any data arrived")
                    break
                if now >= deadline:
                    break
                time.sleep(RECEIVE_POLL_INTERVAL)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read failed: {e}", self.port) from e
        finally:
            self._last_activity = time.monotonic()

        if not response:
            raise ResponseTimeoutError(f"No response within {wait:.2f}s", self.port)

        logger.debug(f"{self.port} RX: {bytes(response).hex()}")
        return bytes(response)
