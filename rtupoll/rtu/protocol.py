"""
Modbus RTU Protocol Module
Handles request building and response parsing for Modbus RTU reads
"""

import logging
import struct
from typing import List

from . import crc
from rtupoll.config import (
    READ_COILS, READ_HOLDING_REGISTERS, SUPPORTED_FUNCTIONS,
    EXCEPTION_FLAG, MAX_READ_COUNT
)
from rtupoll.exceptions import ChecksumError, FrameError, ProtocolError

logger = logging.getLogger(__name__)

# slave + function + byte count
HEADER_LENGTH = 3
CRC_LENGTH = 2
# slave + (function | 0x80) + exception code + CRC
EXCEPTION_RESPONSE_LENGTH = 5


def build_request(unit_id: int, function_code: int, data: bytes) -> bytes:
    """
    Build Modbus RTU request frame

    Args:
        unit_id: Slave unit ID
        function_code: Modbus function code
        data: Request PDU payload

    Returns:
        bytes: Complete RTU frame with CRC
    """
    # [unit_id, function_code, data, crc_low, crc_high]
    request = crc.append(bytes([unit_id, function_code]) + data)
    logger.debug(f"Built request: {request.hex()}")
    return request


def build_read_request(unit_id: int, function_code: int, address: int, count: int) -> bytes:
    """
    Build request for read functions (coils, holding and input registers)

    Args:
        unit_id: Slave unit ID (1-247)
        function_code: Function code (0x01, 0x03, 0x04)
        address: Starting address
        count: Number of items to read (1-125)

    Returns:
        bytes: 8-byte request frame
    """
    if not 0 <= unit_id <= 0xFF:
        raise ValueError(f"Invalid unit ID: {unit_id}")
    if function_code not in SUPPORTED_FUNCTIONS:
        raise ValueError(f"Invalid read function code: {function_code}")
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Invalid start address: {address}")
    if not 1 <= count <= MAX_READ_COUNT:
        raise ValueError(f"Invalid count: {count}")

    # [address_high, address_low, count_high, count_low]
    data = struct.pack('>HH', address, count)
    return build_request(unit_id, function_code, data)


def payload_length(function_code: int, count: int) -> int:
    """Number of data bytes a read response carries for count items"""
    if function_code == READ_COILS:
        return (count + 7) // 8
    return count * 2


def expected_response_length(function_code: int, count: int) -> int:
    """Total length of a normal read response frame"""
    return HEADER_LENGTH + payload_length(function_code, count) + CRC_LENGTH


def response_complete(buffer: bytes, function_code: int, count: int) -> bool:
    """
    Check whether buffer holds a whole response to a read request

    An exception response is complete at 5 bytes; a normal response when the
    byte count announced in its header plus the CRC has arrived.
    """
    if len(buffer) < 2:
        return False
    if buffer[1] & EXCEPTION_FLAG:
        return len(buffer) >= EXCEPTION_RESPONSE_LENGTH
    if len(buffer) < HEADER_LENGTH:
        return False
    if buffer[1] != function_code:
        # Length is unknown; fall back to the expected size
        return len(buffer) >= expected_response_length(function_code, count)
    return len(buffer) >= HEADER_LENGTH + buffer[2] + CRC_LENGTH


def parse_response(response: bytes, expected_unit: int, expected_function: int) -> bytes:
    """
    Validate a Modbus RTU response frame and return its PDU data

    Checks run in order: CRC, unit ID, exception flag, function code.

    Args:
        response: Raw response bytes
        expected_unit: Unit ID the request was sent to
        expected_function: Function code of the request

    Returns:
        bytes: Response data without unit ID, function code and CRC

    Raises:
        ChecksumError: CRC trailer does not match
        FrameError: Frame from another unit or structurally invalid
        ProtocolError: Device exception or mismatched function code
    """
    if not crc.verify(response):
        raise ChecksumError(f"CRC validation failed for response: {response.hex()}", response)

    if len(response) < 4:
        raise FrameError(f"Response too short: {response.hex()}", response)

    unit_id = response[0]
    function_code = response[1]

    if unit_id != expected_unit:
        raise FrameError(
            f"Unit ID mismatch: expected {expected_unit}, got {unit_id}", response
        )

    if function_code & EXCEPTION_FLAG:
        # [unit_id, function_code | 0x80, exception_code, crc]
        if len(response) != EXCEPTION_RESPONSE_LENGTH:
            raise FrameError(f"Invalid exception response format: {response.hex()}", response)
        raise ProtocolError(function_code ^ EXCEPTION_FLAG, response[2], unit_id)

    if function_code != expected_function:
        raise ProtocolError(function_code, None, unit_id)

    return response[2:-2]


def _checked_payload(response_data: bytes, function_code: int, count: int) -> bytes:
    if not response_data:
        raise FrameError("Empty response data")
    byte_count = response_data[0]
    expected = payload_length(function_code, count)
    if byte_count != expected:
        raise FrameError(
            f"Byte count mismatch: expected {expected} bytes for {count} items, got {byte_count}"
        )
    payload = response_data[1:]
    if len(payload) != byte_count:
        raise FrameError(
            f"Payload length mismatch: header announces {byte_count} bytes, got {len(payload)}"
        )
    return payload


def parse_read_coils_response(response_data: bytes, count: int) -> List[bool]:
    """
    Parse response data for read coils

    Args:
        response_data: Response data without header and CRC
        count: Number of coils requested

    Returns:
        List[bool]: Exactly count coil states, padding bits dropped
    """
    coil_bytes = _checked_payload(response_data, READ_COILS, count)
    coils = []
    for byte_val in coil_bytes:
        for bit_pos in range(8):
            coils.append(bool(byte_val & (1 << bit_pos)))
    return coils[:count]


def parse_read_registers_response(response_data: bytes, count: int,
                                  function_code: int = READ_HOLDING_REGISTERS) -> List[int]:
    """
    Parse response data for read holding/input registers

    Args:
        response_data: Response data without header and CRC
        count: Number of registers requested
        function_code: 0x03 or 0x04

    Returns:
        List[int]: Exactly count unsigned 16-bit values
    """
    register_data = _checked_payload(response_data, function_code, count)
    # Each register is 2 bytes, big-endian
    return list(struct.unpack(f'>{count}H', register_data))


def parse_read_response(response: bytes, unit_id: int, function_code: int, count: int) -> list:
    """
    Parse a complete read response frame into typed values

    Args:
        response: Raw response frame including CRC
        unit_id: Unit ID of the request
        function_code: Function code of the request
        count: Number of coils/registers requested

    Returns:
        list: bools for coil reads, ints for register reads
    """
    data = parse_response(response, unit_id, function_code)
    try:
        if function_code == READ_COILS:
            return parse_read_coils_response(data, count)
        return parse_read_registers_response(data, count, function_code)
    except FrameError as e:
        e.frame = response
        raise
