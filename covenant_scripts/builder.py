"""
Covenant Scripts - Script Builder

This module provides the low-level script assembly used by every covenant
script: minimal data pushes, script-number encoding and the single-key,
multi-key and relative-timelock clauses shared by all protocol generations.
"""

import struct
from typing import List, Sequence

from .opcodes import ScriptOpcode
from .constants import X_ONLY_PK_LENGTH, MAX_RELATIVE_TIMELOCK
from .exceptions import InvalidScriptDataError, ScriptDecodeError


def encode_script_number(number: int) -> bytes:
    """
    Encode an integer as a minimal Bitcoin script number.

    Args:
        number: Integer to encode

    Returns:
        Little-endian sign-magnitude bytes (empty for zero)
    """
    if number == 0:
        return b''

    negative = number < 0
    if negative:
        number = -number

    result = []
    while number > 0:
        result.append(number & 0xff)
        number >>= 8

    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


def decode_script_number(data: bytes, max_length: int = 4) -> int:
    """
    Decode a minimally encoded Bitcoin script number.

    Args:
        data: Pushed bytes
        max_length: Maximum accepted encoding length

    Returns:
        Decoded integer

    Raises:
        ScriptDecodeError: If the encoding is too long or not minimal
    """
    if len(data) > max_length:
        raise ScriptDecodeError(f"Script number overflow: {len(data)} bytes")
    if not data:
        return 0

    # Reject non-minimal encodings (a redundant trailing sign byte)
    if data[-1] & 0x7f == 0:
        if len(data) == 1 or not data[-2] & 0x80:
            raise ScriptDecodeError(f"Non-minimally encoded script number: {data.hex()}")

    value = int.from_bytes(data, 'little')
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


class ScriptBuilder:
    """
    Incremental builder for Bitcoin scripts.

    Data pushes use the shortest push opcode; numbers use OP_0 / OP_1..OP_16
    where possible and a minimal script-number push otherwise.
    """

    def __init__(self):
        """Initialize script builder."""
        self.script_stack: List[bytes] = []

    def push_data(self, data: bytes) -> 'ScriptBuilder':
        """Push data onto the script stack."""
        if len(data) == 0:
            self.script_stack.append(bytes([ScriptOpcode.OP_0]))
        elif len(data) == 1 and 1 <= data[0] <= 16:
            self.script_stack.append(bytes([ScriptOpcode.OP_1 + data[0] - 1]))
        elif len(data) == 1 and data[0] == 0x81:
            self.script_stack.append(bytes([ScriptOpcode.OP_1NEGATE]))
        elif len(data) <= 75:
            self.script_stack.append(bytes([len(data)]) + data)
        elif len(data) <= 255:
            self.script_stack.append(bytes([ScriptOpcode.OP_PUSHDATA1, len(data)]) + data)
        elif len(data) <= 65535:
            self.script_stack.append(
                bytes([ScriptOpcode.OP_PUSHDATA2]) + struct.pack('<H', len(data)) + data
            )
        else:
            raise InvalidScriptDataError(f"Data too large: {len(data)} bytes")
        return self

    def push_opcode(self, opcode: int) -> 'ScriptBuilder':
        """Push an opcode onto the script stack."""
        self.script_stack.append(bytes([opcode]))
        return self

    def push_number(self, number: int) -> 'ScriptBuilder':
        """Push a number using minimal encoding."""
        return self.push_data(encode_script_number(number))

    def push_script(self, script: bytes) -> 'ScriptBuilder':
        """Append an already compiled script fragment."""
        self.script_stack.append(script)
        return self

    def build(self) -> bytes:
        """Build the final script."""
        return b''.join(self.script_stack)


def _check_key(pk: bytes, key_length: int) -> None:
    if not isinstance(pk, (bytes, bytearray)) or len(pk) != key_length:
        raise InvalidScriptDataError("Invalid key length")


def build_single_key_script(
    pk: bytes,
    with_verify: bool,
    key_length: int = X_ONLY_PK_LENGTH
) -> bytes:
    """
    Build a single key clause.

    Creates ``<pk> OP_CHECKSIGVERIFY`` when ``with_verify`` is set and
    ``<pk> OP_CHECKSIG`` otherwise.

    Args:
        pk: Public key
        with_verify: Whether the clause must leave nothing on the stack
        key_length: Expected key length for the protocol generation

    Returns:
        Compiled script fragment
    """
    _check_key(pk, key_length)
    return (
        ScriptBuilder()
        .push_data(bytes(pk))
        .push_opcode(ScriptOpcode.OP_CHECKSIGVERIFY if with_verify else ScriptOpcode.OP_CHECKSIG)
        .build()
    )


def build_multi_key_script(
    pks: Sequence[bytes],
    threshold: int,
    with_verify: bool,
    key_length: int = X_ONLY_PK_LENGTH
) -> bytes:
    """
    Build a k-of-n tapscript clause.

    Creates ``<pk1> OP_CHECKSIG <pk2> OP_CHECKSIGADD ... <pkN> OP_CHECKSIGADD
    <threshold> OP_NUMEQUAL[VERIFY]`` over the keys sorted ascending. A single
    key collapses into a plain single key clause.

    Args:
        pks: Public keys taking part in the clause
        threshold: Required number of valid signatures
        with_verify: Whether to terminate with OP_NUMEQUALVERIFY
        key_length: Expected key length for the protocol generation

    Returns:
        Compiled script fragment

    Raises:
        InvalidScriptDataError: On empty key set, bad key length, bad
            threshold or duplicate keys
    """
    if not pks:
        raise InvalidScriptDataError("No keys provided")
    for pk in pks:
        _check_key(pk, key_length)
    if threshold < 1:
        raise InvalidScriptDataError("Required number of valid signers must be at least 1")
    if threshold > len(pks):
        raise InvalidScriptDataError(
            "Required number of valid signers is greater than number of provided keys"
        )

    if len(pks) == 1:
        return build_single_key_script(pks[0], with_verify, key_length)

    # sorted() keeps the caller's sequence untouched
    sorted_pks = sorted(bytes(pk) for pk in pks)
    for left, right in zip(sorted_pks, sorted_pks[1:]):
        if left == right:
            raise InvalidScriptDataError("Duplicate keys provided")

    builder = ScriptBuilder()
    builder.push_data(sorted_pks[0]).push_opcode(ScriptOpcode.OP_CHECKSIG)
    for pk in sorted_pks[1:]:
        builder.push_data(pk).push_opcode(ScriptOpcode.OP_CHECKSIGADD)
    builder.push_number(threshold)
    builder.push_opcode(ScriptOpcode.OP_NUMEQUALVERIFY if with_verify else ScriptOpcode.OP_NUMEQUAL)
    return builder.build()


def build_timelock_script(
    pk: bytes,
    timelock: int,
    key_length: int = X_ONLY_PK_LENGTH
) -> bytes:
    """
    Build a relative timelock script.

    Creates ``<pk> OP_CHECKSIGVERIFY <timelock> OP_CHECKSEQUENCEVERIFY``.
    The owner can spend once ``timelock`` blocks have passed since the
    output was mined.

    Args:
        pk: Owner public key
        timelock: Relative timelock in blocks (1..65535)
        key_length: Expected key length for the protocol generation

    Returns:
        Compiled timelock script
    """
    _check_key(pk, key_length)
    if not isinstance(timelock, int) or timelock < 1 or timelock > MAX_RELATIVE_TIMELOCK:
        raise InvalidScriptDataError(f"Invalid timelock: {timelock}")

    return (
        ScriptBuilder()
        .push_data(bytes(pk))
        .push_opcode(ScriptOpcode.OP_CHECKSIGVERIFY)
        .push_number(timelock)
        .push_opcode(ScriptOpcode.OP_CHECKSEQUENCEVERIFY)
        .build()
    )
