"""
Covenant Scripts - Single-Script Covenant Generation

P2WSH witness scripts of the single-script covenant protocol. Keys are
33-byte compressed public keys. Each protocol output is locked by exactly
one script, so there is no taproot tree; spend builders recover the
timelock or lock height by reading the operand at its fixed position.
"""

from .opcodes import ScriptOpcode
from .builder import ScriptBuilder
from .data_embed import (
    DataEmbedPayload,
    COVENANT_V1_LAYOUT,
    build_data_embed_script as _build_data_embed,
    parse_data_embed_script as _parse_data_embed,
)
from .constants import (
    COMPRESSED_PK_LENGTH,
    EVM_ADDRESS_LENGTH,
    MAX_RELATIVE_TIMELOCK,
    LOCKTIME_HEIGHT_TIME_CUTOFF,
    VALIDATOR_INDEX_LENGTH,
    NONCE_LENGTH,
)
from .exceptions import InvalidScriptDataError


# Operand positions read back by the spend builders
LOCKING_SCRIPT_TIMELOCK_POSITION = 5
PRE_DEPOSIT_LOCK_HEIGHT_POSITION = 0


def _require_bytes(*values) -> None:
    if not all(isinstance(v, (bytes, bytearray)) for v in values):
        raise InvalidScriptDataError("Invalid input types")


def build_locking_script(
    evm_address: bytes,
    delegator_key: bytes,
    validator_key: bytes,
    timelock: int,
    validator_index: bytes,
    nonce: bytes
) -> bytes:
    """
    Build the covenant locking script.

    The owner path (witness top equals the EVM address) lets the delegator
    reclaim funds after ``timelock`` blocks. The cooperative path requires
    the validator index and nonce plus a 2-of-2 signature from validator
    and delegator::

        OP_DUP <evm> OP_EQUAL
        OP_IF
            OP_DROP <timelock> OP_CHECKSEQUENCEVERIFY OP_DROP <delegator> OP_CHECKSIG
        OP_ELSE
            <index||nonce> OP_EQUALVERIFY OP_2 <validator> <delegator> OP_2 OP_CHECKMULTISIG
        OP_ENDIF

    Args:
        evm_address: Owner's EVM address (20 bytes)
        delegator_key: Delegator compressed public key
        validator_key: Validator compressed public key
        timelock: Relative timelock in blocks
        validator_index: Validator index (4 bytes)
        nonce: Nonce (4 bytes)

    Returns:
        Compiled witness script
    """
    _require_bytes(evm_address, delegator_key, validator_key, validator_index, nonce)
    if (len(evm_address) != EVM_ADDRESS_LENGTH
            or len(delegator_key) != COMPRESSED_PK_LENGTH
            or len(validator_key) != COMPRESSED_PK_LENGTH):
        raise InvalidScriptDataError("Invalid input lengths")
    if delegator_key == validator_key:
        raise InvalidScriptDataError("Duplicate keys provided")
    if not isinstance(timelock, int) or not 1 <= timelock <= MAX_RELATIVE_TIMELOCK:
        raise InvalidScriptDataError(f"Invalid timelock: {timelock}")
    if len(validator_index) != VALIDATOR_INDEX_LENGTH:
        raise InvalidScriptDataError("Invalid validator index input")
    if len(nonce) != NONCE_LENGTH:
        raise InvalidScriptDataError("Invalid nonce input")

    return (
        ScriptBuilder()
        .push_opcode(ScriptOpcode.OP_DUP)
        .push_data(bytes(evm_address))
        .push_opcode(ScriptOpcode.OP_EQUAL)
        .push_opcode(ScriptOpcode.OP_IF)
        .push_opcode(ScriptOpcode.OP_DROP)
        .push_number(timelock)
        .push_opcode(ScriptOpcode.OP_CHECKSEQUENCEVERIFY)
        .push_opcode(ScriptOpcode.OP_DROP)
        .push_data(bytes(delegator_key))
        .push_opcode(ScriptOpcode.OP_CHECKSIG)
        .push_opcode(ScriptOpcode.OP_ELSE)
        .push_data(bytes(validator_index) + bytes(nonce))
        .push_opcode(ScriptOpcode.OP_EQUALVERIFY)
        .push_opcode(ScriptOpcode.OP_2)
        .push_data(bytes(validator_key))
        .push_data(bytes(delegator_key))
        .push_opcode(ScriptOpcode.OP_2)
        .push_opcode(ScriptOpcode.OP_CHECKMULTISIG)
        .push_opcode(ScriptOpcode.OP_ENDIF)
        .build()
    )


def build_pre_deposit_locking_script(locker_key: bytes, lock_height: int) -> bytes:
    """
    Build the pre-deposit locking script.

    ``<lock_height> OP_CHECKLOCKTIMEVERIFY OP_DROP <locker> OP_CHECKSIG``.
    The locker can spend once the chain reaches ``lock_height``.
    """
    _require_bytes(locker_key)
    if len(locker_key) != COMPRESSED_PK_LENGTH:
        raise InvalidScriptDataError("Invalid public key length")
    if not isinstance(lock_height, int) or lock_height < 1:
        raise InvalidScriptDataError(f"Invalid lock height: {lock_height}")
    if lock_height >= LOCKTIME_HEIGHT_TIME_CUTOFF:
        raise InvalidScriptDataError("Invalid lock height")

    return (
        ScriptBuilder()
        .push_number(lock_height)
        .push_opcode(ScriptOpcode.OP_CHECKLOCKTIMEVERIFY)
        .push_opcode(ScriptOpcode.OP_DROP)
        .push_data(bytes(locker_key))
        .push_opcode(ScriptOpcode.OP_CHECKSIG)
        .build()
    )


def build_deposit_script(evm_address: bytes, pubkey: bytes) -> bytes:
    """Build ``<evm> OP_DROP <pubkey> OP_CHECKSIG`` binding a deposit to an EVM address."""
    _require_bytes(evm_address, pubkey)
    if len(evm_address) != EVM_ADDRESS_LENGTH:
        raise InvalidScriptDataError("Invalid EVM address length")
    if len(pubkey) != COMPRESSED_PK_LENGTH:
        raise InvalidScriptDataError("Invalid public key length")

    return (
        ScriptBuilder()
        .push_data(bytes(evm_address))
        .push_opcode(ScriptOpcode.OP_DROP)
        .push_data(bytes(pubkey))
        .push_opcode(ScriptOpcode.OP_CHECKSIG)
        .build()
    )


def build_data_embed_script(magic_bytes: bytes, depositor_key: bytes, evm_address: bytes) -> bytes:
    """Build ``OP_RETURN push(magic || version || depositor || evm)``."""
    payload = DataEmbedPayload(
        magic_bytes=bytes(magic_bytes),
        owner_key=bytes(depositor_key),
        evm_address=bytes(evm_address),
    )
    return _build_data_embed(payload, COVENANT_V1_LAYOUT)


def parse_data_embed_script(script: bytes) -> DataEmbedPayload:
    """Parse a script produced by :func:`build_data_embed_script`."""
    return _parse_data_embed(script, COVENANT_V1_LAYOUT)
