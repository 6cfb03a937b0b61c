"""
Modbus RTU CRC16
"""

import struct

CRC16_INIT = 0xFFFF
CRC16_POLY = 0xA001


def compute(data: bytes) -> int:
    """
    Calculate the Modbus RTU CRC16 of data

    Args:
        data: Bytes to checksum (empty input yields 0xFFFF)

    Returns:
        int: 16-bit CRC value
    """
    crc = CRC16_INIT
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ CRC16_POLY
            else:
                crc >>= 1
    return crc


def append(data: bytes) -> bytes:
    """Return data followed by its CRC16, low byte first"""
    return bytes(data) + struct.pack('<H', compute(data))


def verify(frame: bytes) -> bool:
    """
    Check the trailing CRC16 of a frame

    Args:
        frame: Bytes including the two-byte little-endian CRC trailer

    Returns:
        bool: True if the trailer matches the CRC of the preceding bytes
    """
    if len(frame) < 2:
        return False
    received = struct.unpack('<H', frame[-2:])[0]
    return received == compute(frame[:-2])
