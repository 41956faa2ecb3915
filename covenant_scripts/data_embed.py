"""
Covenant Scripts - Data Embed Scripts

OP_RETURN provenance outputs binding an off-chain identity (owner key,
operator key, timelock, external-chain address) to a locking output.
The payload is a fixed-width concatenation whose layout depends on the
protocol generation; parsing is the exact slice-by-offset inverse of
building.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from .opcodes import ScriptOpcode
from .builder import ScriptBuilder
from .encoding import decompile
from .constants import (
    X_ONLY_PK_LENGTH,
    COMPRESSED_PK_LENGTH,
    EVM_ADDRESS_LENGTH,
    MAGIC_BYTES_LENGTH,
    DATA_EMBED_VERSION,
    TIMELOCK_FIELD_LENGTH,
    MAX_RELATIVE_TIMELOCK,
    MAX_OP_RETURN_DATA,
)
from .exceptions import InvalidScriptDataError, ScriptDecodeError


@dataclass(frozen=True)
class DataEmbedLayout:
    """Field layout of a data embed payload for one protocol generation."""
    key_length: int
    has_operator_key: bool = False
    has_timelock: bool = False
    has_evm_address: bool = False

    @property
    def payload_length(self) -> int:
        length = MAGIC_BYTES_LENGTH + 1 + self.key_length
        if self.has_operator_key:
            length += self.key_length
        if self.has_timelock:
            length += TIMELOCK_FIELD_LENGTH
        if self.has_evm_address:
            length += EVM_ADDRESS_LENGTH
        return length


STAKING_LAYOUT = DataEmbedLayout(X_ONLY_PK_LENGTH, has_timelock=True)
LOCKING_LAYOUT = DataEmbedLayout(X_ONLY_PK_LENGTH, has_operator_key=True, has_timelock=True)
BRIDGE_LAYOUT = DataEmbedLayout(X_ONLY_PK_LENGTH, has_evm_address=True)
COVENANT_V1_LAYOUT = DataEmbedLayout(COMPRESSED_PK_LENGTH, has_evm_address=True)


@dataclass(frozen=True)
class DataEmbedPayload:
    """Decoded fields of a data embed output."""
    magic_bytes: bytes
    owner_key: bytes
    operator_key: Optional[bytes] = None
    timelock: Optional[int] = None
    evm_address: Optional[bytes] = None
    version: int = DATA_EMBED_VERSION

    def validate(self, layout: DataEmbedLayout) -> None:
        """
        Check every field against a layout.

        Raises:
            InvalidScriptDataError: If a field is missing, unexpected or has
                the wrong length
        """
        if len(self.magic_bytes) != MAGIC_BYTES_LENGTH:
            raise InvalidScriptDataError("Invalid magic bytes length")
        if not 0 <= self.version <= 0xff:
            raise InvalidScriptDataError(f"Invalid data embed version: {self.version}")
        if len(self.owner_key) != layout.key_length:
            raise InvalidScriptDataError("Invalid key length")

        if layout.has_operator_key:
            if self.operator_key is None or len(self.operator_key) != layout.key_length:
                raise InvalidScriptDataError("Invalid operator key length")
        elif self.operator_key is not None:
            raise InvalidScriptDataError("Operator key is not part of this layout")

        if layout.has_timelock:
            if self.timelock is None or not 1 <= self.timelock <= MAX_RELATIVE_TIMELOCK:
                raise InvalidScriptDataError(f"Invalid timelock: {self.timelock}")
        elif self.timelock is not None:
            raise InvalidScriptDataError("Timelock is not part of this layout")

        if layout.has_evm_address:
            if self.evm_address is None or len(self.evm_address) != EVM_ADDRESS_LENGTH:
                raise InvalidScriptDataError("Invalid EVM address length")
        elif self.evm_address is not None:
            raise InvalidScriptDataError("EVM address is not part of this layout")

    def serialize(self, layout: DataEmbedLayout) -> bytes:
        """Concatenate the payload fields in layout order."""
        self.validate(layout)
        data = bytes(self.magic_bytes) + bytes([self.version]) + bytes(self.owner_key)
        if layout.has_operator_key:
            data += bytes(self.operator_key)
        if layout.has_timelock:
            data += struct.pack('>H', self.timelock)
        if layout.has_evm_address:
            data += bytes(self.evm_address)
        return data


def build_data_embed_script(payload: DataEmbedPayload, layout: DataEmbedLayout) -> bytes:
    """
    Build ``OP_RETURN push(payload)`` for the given layout.

    Args:
        payload: Fields to embed
        layout: Protocol generation layout

    Returns:
        Compiled null-data script
    """
    data = payload.serialize(layout)
    if len(data) > MAX_OP_RETURN_DATA:
        raise InvalidScriptDataError(f"OP_RETURN data too large: {len(data)} bytes")
    return ScriptBuilder().push_opcode(ScriptOpcode.OP_RETURN).push_data(data).build()


def parse_data_embed_script(script: bytes, layout: DataEmbedLayout) -> DataEmbedPayload:
    """
    Parse a data embed script back into its fields.

    Args:
        script: Compiled null-data script
        layout: Layout the script was built with

    Returns:
        Decoded payload

    Raises:
        ScriptDecodeError: If the script is not an OP_RETURN carrying a
            payload of the expected length
    """
    elements = decompile(script)
    if not elements or elements[0].opcode != ScriptOpcode.OP_RETURN or elements[0].is_push_data:
        raise ScriptDecodeError("Invalid data embed script: Not OP_RETURN")
    if len(elements) != 2 or not elements[1].is_push_data:
        raise ScriptDecodeError("No data found in OP_RETURN output")

    data = elements[1].data
    if len(data) != layout.payload_length:
        raise ScriptDecodeError(
            f"Invalid data embed length: expected {layout.payload_length}, got {len(data)}"
        )

    offset = 0

    def take(size: int) -> bytes:
        nonlocal offset
        chunk = data[offset:offset + size]
        offset += size
        return chunk

    magic_bytes = take(MAGIC_BYTES_LENGTH)
    version = take(1)[0]
    owner_key = take(layout.key_length)
    operator_key = take(layout.key_length) if layout.has_operator_key else None
    timelock = struct.unpack('>H', take(TIMELOCK_FIELD_LENGTH))[0] if layout.has_timelock else None
    evm_address = take(EVM_ADDRESS_LENGTH) if layout.has_evm_address else None

    return DataEmbedPayload(
        magic_bytes=magic_bytes,
        owner_key=owner_key,
        operator_key=operator_key,
        timelock=timelock,
        evm_address=evm_address,
        version=version,
    )
