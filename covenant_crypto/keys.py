"""
Covenant PSBT - Key Utilities

BIP340/BIP341 helpers on top of coincurve: tagged hashes, x-only key
handling and the taproot output-key tweak used to derive the address of
every covenant output. Signing is out of scope; only public keys are
handled here.
"""

import hashlib
from typing import Optional, Tuple

from coincurve import PublicKey as CoinCurvePublicKey

from .exceptions import InvalidKeyError


# Provably unspendable internal key shared by every taproot output of the
# protocol, so only script-path spends are possible.
NUMS_INTERNAL_KEY = bytes.fromhex(
    "0264173d3a9fb10d58cb5553332f0fa2b971809d1a8626ca7cb6eebb66eb4cb9ec"
)
NUMS_INTERNAL_KEY_XONLY = NUMS_INTERNAL_KEY[1:]

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift x-coordinate to full point, returning the even y-coordinate point.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if invalid
    """
    if len(x) != 32:
        return None

    candidate = b'\x02' + bytes(x)
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def to_x_only(pubkey: bytes) -> bytes:
    """
    Convert a public key to its 32-byte x-only form.

    Args:
        pubkey: 32-byte x-only or 33-byte compressed public key

    Returns:
        32-byte x-only public key

    Raises:
        InvalidKeyError: If the key has another length or prefix
    """
    if len(pubkey) == 32:
        return bytes(pubkey)
    if len(pubkey) == 33 and pubkey[0] in (0x02, 0x03):
        return bytes(pubkey[1:])
    raise InvalidKeyError(f"Invalid public key length: {len(pubkey)}")


def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = bytes(internal_pubkey_x)
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)


def taproot_tweak_public_key(
    internal_pubkey_x: bytes,
    merkle_root: Optional[bytes] = None
) -> Tuple[bytes, int]:
    """
    Tweak an x-only internal key into a taproot output key.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        Tuple of (32-byte x-only output key, output key y parity)

    Raises:
        InvalidKeyError: If the internal key is not on the curve or the
            tweak is out of range
    """
    internal_key = lift_x(internal_pubkey_x)
    if internal_key is None:
        raise InvalidKeyError("Internal key is not a valid x-only public key")

    tweak = compute_taproot_tweak(internal_pubkey_x, merkle_root)
    if int.from_bytes(tweak, 'big') >= CURVE_ORDER:
        raise InvalidKeyError("Taproot tweak exceeds curve order")

    try:
        output_key = CoinCurvePublicKey(internal_key).add(tweak).format(compressed=True)
    except ValueError as e:
        raise InvalidKeyError(f"Failed to tweak public key: {e}") from e

    return output_key[1:], output_key[0] & 1


def taproot_output_script(tweaked_pubkey_x: bytes) -> bytes:
    """
    Create Taproot output script (witness program).

    Args:
        tweaked_pubkey_x: 32-byte x-only tweaked public key

    Returns:
        34-byte ``OP_1 <32 bytes>`` scriptPubKey
    """
    if len(tweaked_pubkey_x) != 32:
        raise InvalidKeyError("Tweaked pubkey must be 32 bytes")
    return b'\x51\x20' + bytes(tweaked_pubkey_x)
