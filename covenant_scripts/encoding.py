"""
Covenant Scripts - Script Decoding

A narrow decompiler for covenant scripts. Spend builders use it to recover
the relative timelock (or absolute lock height) embedded in a script by
reading the operand at its fixed position. This is not a script interpreter.
"""

import struct
from dataclasses import dataclass
from typing import List, Optional

from .opcodes import ScriptOpcode
from .builder import decode_script_number
from .constants import MAX_RELATIVE_TIMELOCK
from .exceptions import ScriptDecodeError


_OPCODE_NAMES = ScriptOpcode.names()


@dataclass(frozen=True)
class ScriptElement:
    """Represents a single element in a Bitcoin script."""
    opcode: int
    data: Optional[bytes] = None

    @property
    def is_push_data(self) -> bool:
        return self.data is not None

    def to_asm(self) -> str:
        """Convert to assembly string representation."""
        if self.is_push_data:
            return self.data.hex() if self.data else "OP_0"
        return _OPCODE_NAMES.get(self.opcode, f"OP_UNKNOWN_{self.opcode:02x}")


def decompile(script: bytes) -> List[ScriptElement]:
    """
    Split raw script bytes into opcode and push elements.

    OP_0 is reported as an empty push, OP_1..OP_16 as plain opcodes.

    Args:
        script: Raw script bytes

    Returns:
        List of script elements in order

    Raises:
        ScriptDecodeError: If a push runs past the end of the script
    """
    elements = []
    pc = 0

    while pc < len(script):
        opcode = script[pc]
        pc += 1

        if opcode == ScriptOpcode.OP_0:
            elements.append(ScriptElement(opcode, b''))
            continue

        if 1 <= opcode <= 75:
            data_len = opcode
        elif opcode == ScriptOpcode.OP_PUSHDATA1:
            if pc + 1 > len(script):
                raise ScriptDecodeError("Missing length byte for OP_PUSHDATA1")
            data_len = script[pc]
            pc += 1
        elif opcode == ScriptOpcode.OP_PUSHDATA2:
            if pc + 2 > len(script):
                raise ScriptDecodeError("Missing length bytes for OP_PUSHDATA2")
            data_len = struct.unpack('<H', script[pc:pc + 2])[0]
            pc += 2
        elif opcode == ScriptOpcode.OP_PUSHDATA4:
            if pc + 4 > len(script):
                raise ScriptDecodeError("Missing length bytes for OP_PUSHDATA4")
            data_len = struct.unpack('<I', script[pc:pc + 4])[0]
            pc += 4
        else:
            elements.append(ScriptElement(opcode))
            continue

        if pc + data_len > len(script):
            raise ScriptDecodeError(f"Insufficient data for push at position {pc}")
        elements.append(ScriptElement(opcode, bytes(script[pc:pc + data_len])))
        pc += data_len

    return elements


def script_to_asm(script: bytes) -> str:
    """Convert script bytes to a human-readable assembly string."""
    return " ".join(element.to_asm() for element in decompile(script))


def read_number_operand(script: bytes, position: int, max_length: int = 4) -> int:
    """
    Read the numeric operand at a fixed position of a script.

    Small values are compiled to OP_1..OP_16 instead of a push, so both
    encodings are accepted.

    Args:
        script: Compiled script
        position: Element index of the operand
        max_length: Maximum script-number length

    Returns:
        The decoded integer

    Raises:
        ScriptDecodeError: If the script does not decompile or the operand
            is missing or not a number
    """
    try:
        elements = decompile(script)
    except ScriptDecodeError as e:
        raise ScriptDecodeError(f"Timelock script is not valid: {e}") from e

    if position >= len(elements):
        raise ScriptDecodeError("Timelock script is not valid: operand position out of range")

    element = elements[position]
    if element.is_push_data:
        return decode_script_number(element.data, max_length)
    if ScriptOpcode.is_small_int(element.opcode):
        return ScriptOpcode.small_int_value(element.opcode)
    raise ScriptDecodeError(
        f"Timelock script is not valid: expected a number at position {position}, "
        f"found {element.to_asm()}"
    )


def extract_timelock(script: bytes, position: int = 2) -> int:
    """
    Recover the relative timelock compiled into a script.

    Args:
        script: Timelock or locking script
        position: Operand position (2 for tapscript timelock leaves, 5 for
            the P2WSH covenant locking script)

    Returns:
        Relative timelock in blocks, usable as the spending input's sequence
    """
    timelock = read_number_operand(script, position)
    if timelock < 1 or timelock > MAX_RELATIVE_TIMELOCK:
        raise ScriptDecodeError(f"Timelock script is not valid: timelock {timelock} out of range")
    return timelock


def is_op_return(script: bytes) -> bool:
    """Check whether script is a null-data (OP_RETURN) script."""
    return len(script) > 0 and script[0] == ScriptOpcode.OP_RETURN
