"""
Modbus RTU Client
Runs request/response exchanges over an open SerialSession
"""

import logging
import threading
from functools import partial
from typing import List, Optional

from . import protocol
from rtupoll.config import (
    DEFAULT_MAX_ATTEMPTS, READ_COILS, READ_HOLDING_REGISTERS, READ_INPUT_REGISTERS,
    REGISTER_FUNCTIONS, FUNCTION_NAMES
)
from rtupoll.devices import DeviceSpec
from rtupoll.exceptions import ChecksumError, ResponseTimeoutError, UnsupportedFunctionError
from rtupoll.results import CoilResult, PollResult, RegisterResult

logger = logging.getLogger(__name__)

# Transient failures worth another attempt on the same session
RETRYABLE_ERRORS = (ResponseTimeoutError, ChecksumError)


class RtuClient:
    """
    Modbus RTU master for read requests

    The client holds no connection of its own; every call receives the
    session to use, so the caller decides when the port is opened and closed.
    """

    def __init__(self,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 timeout: Optional[float] = None,
                 cancel: Optional[threading.Event] = None,
                 device_logger: logging.Logger = None):
        """
        Args:
            max_attempts: Total attempts per request (first try included)
            timeout: Receive bound per attempt (default: the session's timeout)
            cancel: Shutdown token; no new attempt starts once it is set
            device_logger: Logger for exchange logs (default: module logger)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.cancel = cancel
        self.device_logger = device_logger if device_logger is not None else logger

    def execute(self, session, unit_id: int, function_code: int, address: int, count: int) -> list:
        """
        Send one read request and return the decoded values, retrying on
        timeouts and checksum errors

        Args:
            session: Open SerialSession (or anything with send/receive)
            unit_id: Slave address
            function_code: 0x01, 0x03 or 0x04
            address: Start address
            count: Number of coils/registers

        Returns:
            list: Decoded coil states or register values

        Raises:
            ResponseTimeoutError, ChecksumError: after max_attempts failures
            ProtocolError, FrameError, TransportError: immediately
        """
        request = protocol.build_read_request(unit_id, function_code, address, count)
        is_complete = partial(protocol.response_complete, function_code=function_code, count=count)
        name = FUNCTION_NAMES.get(function_code, hex(function_code))

        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1 and self.cancel is not None and self.cancel.is_set():
                self.device_logger.info(
                    f"Shutdown requested, not retrying {name} for unit {unit_id}"
                )
                break
            try:
                session.send(request)
                response = session.receive(self.timeout, is_complete, self.cancel)
                return protocol.parse_read_response(response, unit_id, function_code, count)
            except RETRYABLE_ERRORS as e:
                last_error = e
                self.device_logger.warning(
                    f"{name} unit {unit_id} attempt {attempt}/{self.max_attempts} failed: {e}"
                )

        raise last_error

    def read_coils(self, session, unit_id: int, address: int, count: int) -> List[bool]:
        """Read coil states (function 0x01)"""
        return self.execute(session, unit_id, READ_COILS, address, count)

    def read_registers(self, session, unit_id: int, address: int, count: int,
                       function_code: int = READ_HOLDING_REGISTERS) -> List[int]:
        """Read holding (0x03) or input (0x04) register values"""
        if function_code not in REGISTER_FUNCTIONS:
            raise UnsupportedFunctionError(function_code)
        return self.execute(session, unit_id, function_code, address, count)

    def read_holding_registers(self, session, unit_id: int, address: int, count: int) -> List[int]:
        return self.read_registers(session, unit_id, address, count, READ_HOLDING_REGISTERS)

    def read_input_registers(self, session, unit_id: int, address: int, count: int) -> List[int]:
        return self.read_registers(session, unit_id, address, count, READ_INPUT_REGISTERS)

    def read_device(self, session, device: DeviceSpec) -> PollResult:
        """
        Read the block configured for a device

        Returns:
            PollResult: CoilResult or RegisterResult tagged with the function code
        """
        if device.function_code == READ_COILS:
            values = self.read_coils(session, device.slave, device.start_address, device.count)
            return CoilResult(device, tuple(values))
        if device.function_code in REGISTER_FUNCTIONS:
            values = self.read_registers(session, device.slave, device.start_address,
                                         device.count, device.function_code)
            return RegisterResult(device, device.function_code, tuple(values))
        raise UnsupportedFunctionError(device.function_code)
