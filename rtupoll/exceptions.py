"""
rtupoll exceptions

Every failure raised while polling a single device derives from RtuPollError,
so the scheduler can contain it to that device's iteration.
"""

from typing import Optional

from .config import EXCEPTION_DESCRIPTIONS


class RtuPollError(Exception):
    """Base exception for all rtupoll errors"""


class ConfigError(RtuPollError):
    """Malformed device-list entry"""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class TransportError(RtuPollError):
    """Serial port could not be opened, written or read"""

    def __init__(self, message: str, port: Optional[str] = None):
        self.port = port
        if port is not None:
            message = f"{port}: {message}"
        super().__init__(message)


class ResponseTimeoutError(TransportError):
    """No response arrived within the receive bound"""


class ChecksumError(TransportError):
    """Response frame failed CRC16 validation"""

    def __init__(self, message: str, frame: bytes = b"", port: Optional[str] = None):
        self.frame = frame
        super().__init__(message, port)


class FrameError(RtuPollError):
    """Checksum-valid frame with an unexpected structure"""

    def __init__(self, message: str, frame: bytes = b""):
        self.frame = frame
        super().__init__(message)


class ProtocolError(RtuPollError):
    """Device answered with a Modbus exception or a mismatched function code"""

    def __init__(self, function_code: int, exception_code: Optional[int] = None,
                 slave: Optional[int] = None):
        self.function_code = function_code
        self.exception_code = exception_code
        self.slave = slave
        if exception_code is not None:
            description = EXCEPTION_DESCRIPTIONS.get(
                exception_code, f"Unknown exception code: {exception_code}"
            )
            message = (f"device exception {exception_code:#04x} ({description}) "
                       f"for function {function_code:#04x}")
        else:
            message = f"unexpected function code {function_code:#04x} in response"
        if slave is not None:
            message = f"slave {slave}: {message}"
        super().__init__(message)

    @property
    def description(self) -> Optional[str]:
        if self.exception_code is None:
            return None
        return EXCEPTION_DESCRIPTIONS.get(self.exception_code)


class UnsupportedFunctionError(RtuPollError):
    """Function code outside the supported read functions"""

    def __init__(self, function_code: int):
        self.function_code = function_code
        super().__init__(f"Unsupported Modbus function: {function_code}")


class SinkError(RtuPollError):
    """Result could not be persisted"""
