"""
Poll results

A PollResult is produced once per device per round and handed straight to the
formatter and sink. Each variant carries its own function code so consumers
never need to look it up elsewhere.
"""

from dataclasses import dataclass
from typing import Tuple, Union

from .config import READ_COILS, REGISTER_FUNCTIONS
from .devices import DeviceSpec


@dataclass(frozen=True)
class CoilResult:
    """Coil states read with function 0x01"""

    device: DeviceSpec
    values: Tuple[bool, ...]

    @property
    def function_code(self) -> int:
        return READ_COILS


@dataclass(frozen=True)
class RegisterResult:
    """Register values read with function 0x03 or 0x04"""

    device: DeviceSpec
    function_code: int
    values: Tuple[int, ...]

    def __post_init__(self):
        if self.function_code not in REGISTER_FUNCTIONS:
            raise ValueError(f"Not a register read function: {self.function_code}")


PollResult = Union[CoilResult, RegisterResult]
