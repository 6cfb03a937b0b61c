"""
Device list
DeviceSpec records and the CSV loader for the polled device list
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Union

import serial

from .config import FUNCTION_NAMES, MAX_READ_COUNT, SUPPORTED_FUNCTIONS
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

FIELD_COUNT = 9

# Letters as used by pyserial; names and numeric values of the .NET Parity
# and StopBits enums
PARITIES = {
    'N': serial.PARITY_NONE,
    'NONE': serial.PARITY_NONE,
    'E': serial.PARITY_EVEN,
    'EVEN': serial.PARITY_EVEN,
    'O': serial.PARITY_ODD,
    'ODD': serial.PARITY_ODD,
    'M': serial.PARITY_MARK,
    'MARK': serial.PARITY_MARK,
    'S': serial.PARITY_SPACE,
    'SPACE': serial.PARITY_SPACE,
    '0': serial.PARITY_NONE,
    '1': serial.PARITY_ODD,
    '2': serial.PARITY_EVEN,
    '3': serial.PARITY_MARK,
    '4': serial.PARITY_SPACE,
}

STOPBITS = {
    '1': serial.STOPBITS_ONE,
    'ONE': serial.STOPBITS_ONE,
    '1.5': serial.STOPBITS_ONE_POINT_FIVE,
    'ONEPOINTFIVE': serial.STOPBITS_ONE_POINT_FIVE,
    '2': serial.STOPBITS_TWO,
    'TWO': serial.STOPBITS_TWO,
    '3': serial.STOPBITS_ONE_POINT_FIVE,
}

BYTESIZES = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


def parse_parity(value: str) -> str:
    """Map a parity letter (N/E/O/M/S), name (None/Even/...) or enum value (0-4)"""
    try:
        return PARITIES[str(value).strip().upper()]
    except KeyError:
        raise ConfigError(f"Invalid parity: {value!r}") from None


def parse_stopbits(value: Union[str, float]) -> float:
    """Map stop bits given as 1/1.5/2, One/OnePointFive/Two or enum value 3 (1.5)"""
    key = str(value).strip().upper()
    if key.endswith('.0'):
        key = key[:-2]
    try:
        return STOPBITS[key]
    except KeyError:
        raise ConfigError(f"Invalid stop bits: {value!r}") from None


def parse_bytesize(value: Union[str, int]) -> int:
    """Validate data bits (5-8)"""
    try:
        return BYTESIZES[int(value)]
    except (KeyError, ValueError):
        raise ConfigError(f"Invalid data bits: {value!r}") from None


@dataclass(frozen=True)
class DeviceSpec:
    """One configured device and the block it is polled for"""

    port: str
    baudrate: int
    bytesize: int
    parity: str
    stopbits: float
    slave: int
    function_code: int
    start_address: int
    count: int

    def __post_init__(self):
        if not self.port:
            raise ConfigError("Empty port name")
        if self.baudrate <= 0:
            raise ConfigError(f"Invalid baud rate: {self.baudrate}")
        if self.bytesize not in BYTESIZES.values():
            raise ConfigError(f"Invalid data bits: {self.bytesize}")
        if self.parity not in PARITIES.values():
            raise ConfigError(f"Invalid parity: {self.parity!r}")
        if self.stopbits not in STOPBITS.values():
            raise ConfigError(f"Invalid stop bits: {self.stopbits}")
        if not 1 <= self.slave <= 247:
            raise ConfigError(f"Invalid slave address: {self.slave}")
        if self.function_code not in SUPPORTED_FUNCTIONS:
            raise ConfigError(f"Unsupported Modbus function: {self.function_code}")
        if not 0 < self.start_address <= 0xFFFF:
            raise ConfigError(f"Invalid start address: {self.start_address}")
        if not 0 < self.count <= MAX_READ_COUNT:
            raise ConfigError(f"Invalid number of registers: {self.count} (must be 1-{MAX_READ_COUNT})")

    @property
    def function_name(self) -> str:
        return FUNCTION_NAMES.get(self.function_code, str(self.function_code))

    def describe(self) -> str:
        """Short identity used in log messages"""
        return (f"{self.port} slave {self.slave} {self.function_name} "
                f"@{self.start_address} x{self.count}")


def _int_field(name: str, value: str) -> int:
    text = value.strip()
    try:
        return int(text, 16) if text.lower().startswith('0x') else int(text)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value!r}") from None


def parse_device(fields: Sequence[str], line: int = None) -> DeviceSpec:
    """
    Build a DeviceSpec from one CSV row

    Args:
        fields: port, baud, data bits, parity, stop bits, slave, function, start, count
        line: Line number for error messages

    Returns:
        DeviceSpec: Validated device

    Raises:
        ConfigError: Missing or invalid fields
    """
    if len(fields) < FIELD_COUNT:
        raise ConfigError(
            f"Invalid CSV line format: expected {FIELD_COUNT} fields, got {len(fields)}", line
        )
    if len(fields) > FIELD_COUNT:
        logger.debug(f"Ignoring {len(fields) - FIELD_COUNT} extra field(s) on line {line}")

    try:
        return DeviceSpec(
            port=fields[0].strip(),
            baudrate=_int_field('baud rate', fields[1]),
            bytesize=parse_bytesize(fields[2]),
            parity=parse_parity(fields[3]),
            stopbits=parse_stopbits(fields[4]),
            slave=_int_field('slave address', fields[5]),
            function_code=_int_field('function code', fields[6]),
            start_address=_int_field('start address', fields[7]),
            count=_int_field('count', fields[8]),
        )
    except ConfigError as e:
        if line is not None and e.line is None:
            raise ConfigError(str(e), line) from None
        raise


def parse_devices(rows: Iterable[Sequence[str]]) -> List[DeviceSpec]:
    """
    Build the device list from CSV rows, skipping invalid ones

    Blank rows and rows whose first field starts with '#' are ignored.
    """
    devices = []
    for line, row in enumerate(rows, start=1):
        if not row or not any(field.strip() for field in row):
            continue
        if row[0].lstrip().startswith('#'):
            continue
        try:
            devices.append(parse_device(row, line))
        except ConfigError as e:
            logger.warning(f"Skipping device entry: {e}")
    return devices


def load_devices(path: Union[str, Path]) -> List[DeviceSpec]:
    """
    Load the device list from a CSV file

    Args:
        path: Path to the CSV file

    Returns:
        List[DeviceSpec]: Valid devices in file order

    Raises:
        ConfigError: File missing or unreadable
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"The specified config file does not exist: {path}")
    try:
        with open(path, newline='', encoding='utf-8') as f:
            devices = parse_devices(csv.reader(f))
    except (OSError, csv.Error) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e

    logger.info(f"Loaded {len(devices)} device(s) from {path}")
    return devices
