"""
Deterministic keys and UTXOs shared by the test modules.
"""

from coincurve import PrivateKey

from covenant_psbt.types import UTXO


MAGIC_BYTES = b'cvnt'
EVM_ADDRESS = bytes.fromhex('742d35cc6634c0532925a3b844bc454e4438f44e')


def make_compressed_key(index: int) -> bytes:
    """Deterministic compressed public key for secret ``index``."""
    return PrivateKey(index.to_bytes(32, 'big')).public_key.format(compressed=True)


def make_x_only_key(index: int) -> bytes:
    return make_compressed_key(index)[1:]


def make_p2wpkh_utxo(index: int, value: int, program: bytes = b'\x11' * 20) -> UTXO:
    return UTXO(
        txid=f"{index:02x}" * 32,
        vout=index % 4,
        value=value,
        script_pubkey=(b'\x00\x14' + program).hex(),
    )
