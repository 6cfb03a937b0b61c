"""
rtupoll configuration
Protocol constants and environment-backed defaults
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

# Modbus function codes (read-only subset)
READ_COILS = 0x01
READ_HOLDING_REGISTERS = 0x03
READ_INPUT_REGISTERS = 0x04

SUPPORTED_FUNCTIONS = (READ_COILS, READ_HOLDING_REGISTERS, READ_INPUT_REGISTERS)
REGISTER_FUNCTIONS = (READ_HOLDING_REGISTERS, READ_INPUT_REGISTERS)

FUNCTION_NAMES = {
    READ_COILS: "ReadCoils",
    READ_HOLDING_REGISTERS: "ReadHoldingRegisters",
    READ_INPUT_REGISTERS: "ReadInputRegisters",
}

# Modbus exception responses have the high bit of the function code set
EXCEPTION_FLAG = 0x80

# A read response PDU may carry at most 125 registers
MAX_READ_COUNT = 125

# Exception codes
EXCEPTION_ILLEGAL_FUNCTION = 0x01
EXCEPTION_ILLEGAL_ADDRESS = 0x02
EXCEPTION_ILLEGAL_VALUE = 0x03
EXCEPTION_DEVICE_FAILURE = 0x04
EXCEPTION_ACKNOWLEDGE = 0x05
EXCEPTION_DEVICE_BUSY = 0x06
EXCEPTION_MEMORY_PARITY_ERROR = 0x08
EXCEPTION_GATEWAY_PATH_UNAVAILABLE = 0x0A
EXCEPTION_GATEWAY_TARGET_FAILED = 0x0B

EXCEPTION_DESCRIPTIONS = {
    EXCEPTION_ILLEGAL_FUNCTION: "Illegal function code",
    EXCEPTION_ILLEGAL_ADDRESS: "Illegal data address",
    EXCEPTION_ILLEGAL_VALUE: "Illegal data value",
    EXCEPTION_DEVICE_FAILURE: "Device failure",
    EXCEPTION_ACKNOWLEDGE: "Acknowledge",
    EXCEPTION_DEVICE_BUSY: "Device busy",
    EXCEPTION_MEMORY_PARITY_ERROR: "Memory parity error",
    EXCEPTION_GATEWAY_PATH_UNAVAILABLE: "Gateway path unavailable",
    EXCEPTION_GATEWAY_TARGET_FAILED: "Gateway target device failed to respond",
}

# Defaults
DEFAULT_INTERVAL = 3.0
DEFAULT_READ_TIMEOUT = 1.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RS485_DELAY = 0.005
DEFAULT_DATABASE_URL = "sqlite:///rtupoll.db"
DEFAULT_TABLE = "tbl_tstplc"

# How often the receive loop checks the port for new bytes
RECEIVE_POLL_INTERVAL = 0.002


def _env_number(name: str, default, convert):
    value = os.environ.get(name)
    if value in (None, ""):
        return default
    try:
        return convert(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value!r}") from None


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the poller"""

    interval: float = DEFAULT_INTERVAL
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    rs485_delay: float = DEFAULT_RS485_DELAY
    database_url: str = DEFAULT_DATABASE_URL
    table: str = DEFAULT_TABLE
    label1: Optional[str] = None
    label2: Optional[str] = None

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError(f"Interval must not be negative, got {self.interval}")
        if self.read_timeout <= 0:
            raise ValueError(f"Read timeout must be positive, got {self.read_timeout}")
        if self.max_attempts < 1:
            raise ValueError(f"Attempts must be at least 1, got {self.max_attempts}")
        if self.rs485_delay < 0:
            raise ValueError(f"RS485 delay must not be negative, got {self.rs485_delay}")

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from RTUPOLL_* environment variables

        Returns:
            Settings: settings with unset variables left at their defaults
        """
        return cls(
            interval=_env_float("RTUPOLL_INTERVAL", DEFAULT_INTERVAL),
            read_timeout=_env_float("RTUPOLL_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
            max_attempts=_env_int("RTUPOLL_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            rs485_delay=_env_float("RTUPOLL_RS485_DELAY", DEFAULT_RS485_DELAY),
            database_url=os.environ.get("RTUPOLL_DATABASE_URL") or DEFAULT_DATABASE_URL,
            table=os.environ.get("RTUPOLL_TABLE") or DEFAULT_TABLE,
            label1=os.environ.get("RTUPOLL_LABEL1") or None,
            label2=os.environ.get("RTUPOLL_LABEL2") or None,
        )

    def override(self, **kwargs) -> "Settings":
        """Return a copy with every non-None keyword applied"""
        changes = {key: value for key, value in kwargs.items() if value is not None}
        return replace(self, **changes)
