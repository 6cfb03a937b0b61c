"""
Modbus RTU Package
CRC16, framing, serial transport and client for Modbus RTU reads
"""

# CRC functions
from . import crc

# Protocol functions
from .protocol import (
    build_request, build_read_request, parse_response, parse_read_response,
    parse_read_coils_response, parse_read_registers_response,
    expected_response_length, response_complete
)

# Transport and client
from .transport import SerialSession
from .client import RtuClient, RETRYABLE_ERRORS

__all__ = [
    'crc',
    'build_request',
    'build_read_request',
    'parse_response',
    'parse_read_response',
    'parse_read_coils_response',
    'parse_read_registers_response',
    'expected_response_length',
    'response_complete',
    'SerialSession',
    'RtuClient',
    'RETRYABLE_ERRORS',
]
