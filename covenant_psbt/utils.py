"""
Covenant PSBT - Utilities

This module provides serialization helpers and output-script pattern checks
shared by the PSBT container, the fee estimators and the transaction builders.
Compact sizes, hashing and raw transaction parsing come from bitcoinlib.
"""

import hashlib
import struct
from typing import Iterable

from bitcoinlib.encoding import double_sha256, int_to_varbyteint
from bitcoinlib.transactions import Transaction

from covenant_scripts.encoding import is_op_return


def serialize_compact_size(n: int) -> bytes:
    """Serialize integer as Bitcoin compact size."""
    return int_to_varbyteint(n)


def varstr(data: bytes) -> bytes:
    """
    Length-prefix ``data`` with its compact size.

    ``bitcoinlib.encoding.varstr`` returns a lone ``b'\\x00'`` without a
    prefix because it is meant for script pushes. PSBT key types are often
    ``0x00``, so the prefix is always written here.
    """
    data = bytes(data)
    return int_to_varbyteint(len(data)) + data


def calculate_witness_script_hash(script: bytes) -> bytes:
    """Calculate SHA256 hash of witness script for P2WSH."""
    return hashlib.sha256(script).digest()


def create_p2wsh_script(witness_script: bytes) -> bytes:
    """
    Create P2WSH output script from witness script.

    Args:
        witness_script: The witness script

    Returns:
        P2WSH output script (OP_0 + 32-byte script hash)
    """
    script_hash = calculate_witness_script_hash(witness_script)
    return bytes([0x00, 0x20]) + script_hash


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """
    Serialize transaction outpoint.

    Args:
        txid: Transaction ID as hex string
        vout: Output index

    Returns:
        Serialized outpoint (32 bytes txid + 4 bytes vout)
    """
    txid_bytes = bytes.fromhex(txid)[::-1]
    return txid_bytes + struct.pack('<I', vout)


def serialize_witness_utxo(value: int, script_pubkey: bytes) -> bytes:
    """
    Serialize a PSBT witness UTXO (a transaction output).

    Args:
        value: Output value in satoshis
        script_pubkey: Output locking script

    Returns:
        ``value (8 bytes LE) || varstr(script_pubkey)``
    """
    return struct.pack('<q', value) + varstr(script_pubkey)


def serialize_witness_stack(items: Iterable[bytes]) -> bytes:
    """Serialize a witness stack as item count followed by length-prefixed items."""
    items = list(items)
    return serialize_compact_size(len(items)) + b''.join(varstr(item) for item in items)


def parse_raw_transaction(raw_tx: bytes) -> Transaction:
    """
    Parse a serialized transaction (legacy or segwit) with bitcoinlib.

    Args:
        raw_tx: Serialized transaction bytes

    Returns:
        bitcoinlib ``Transaction``; ``txid`` and ``outputs[i].value`` /
        ``outputs[i].lock_script`` are what the spend contexts read

    Raises:
        ValueError: If bitcoinlib cannot parse the data
    """
    try:
        return Transaction.parse_hex(bytes(raw_tx).hex())
    except Exception as e:
        raise ValueError(f"Failed to parse transaction: {e}") from e


def is_p2wpkh_script(script: bytes) -> bool:
    """Check for ``OP_0 <20-byte key hash>``."""
    return len(script) == 22 and script[0] == 0x00 and script[1] == 0x14


def is_p2wsh_script(script: bytes) -> bool:
    """Check for ``OP_0 <32-byte script hash>``."""
    return len(script) == 34 and script[0] == 0x00 and script[1] == 0x20


def is_p2tr_script(script: bytes) -> bool:
    """Check for ``OP_1 <32-byte output key>``."""
    return len(script) == 34 and script[0] == 0x51 and script[1] == 0x20


__all__ = [
    'serialize_compact_size',
    'varstr',
    'double_sha256',
    'calculate_witness_script_hash',
    'create_p2wsh_script',
    'serialize_outpoint',
    'serialize_witness_utxo',
    'serialize_witness_stack',
    'parse_raw_transaction',
    'is_p2wpkh_script',
    'is_p2wsh_script',
    'is_p2tr_script',
    'is_op_return',
]
