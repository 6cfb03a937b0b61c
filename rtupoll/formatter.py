"""
Result formatter
Renders coil/register values as the comma-separated text stored by the sink
"""

from typing import Sequence

from .config import READ_COILS, REGISTER_FUNCTIONS
from .exceptions import UnsupportedFunctionError
from .results import PollResult


def format_values(values: Sequence, function_code: int) -> str:
    """
    Format read values for storage

    Args:
        values: Coil states (bool) or register values (int)
        function_code: Function code the values were read with

    Returns:
        str: "true,false,..." for coils, "10,20,..." for registers

    Raises:
        UnsupportedFunctionError: function_code is not 0x01, 0x03 or 0x04
    """
    if function_code == READ_COILS:
        return ",".join("true" if value else "false" for value in values)
    if function_code in REGISTER_FUNCTIONS:
        return ",".join(str(int(value)) for value in values)
    raise UnsupportedFunctionError(function_code)


def format_result(result: PollResult) -> str:
    """Format a poll result using its own function code"""
    return format_values(result.values, result.function_code)
