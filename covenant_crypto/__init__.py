"""
Covenant PSBT - Cryptographic Operations Module

This module provides the BIP340/BIP341 public-key helpers used to derive
covenant taproot outputs:
- Tagged hashes and x-only key handling
- Taproot output-key tweaking
- The protocol-wide NUMS internal key

Dependencies:
- coincurve: Fast secp256k1 operations
- hashlib: Cryptographic hash functions
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
)
from .keys import (
    NUMS_INTERNAL_KEY,
    NUMS_INTERNAL_KEY_XONLY,
    tagged_hash,
    lift_x,
    to_x_only,
    compute_taproot_tweak,
    taproot_tweak_public_key,
    taproot_output_script,
)

__all__ = [
    'CryptoError',
    'InvalidKeyError',
    'NUMS_INTERNAL_KEY',
    'NUMS_INTERNAL_KEY_XONLY',
    'tagged_hash',
    'lift_x',
    'to_x_only',
    'compute_taproot_tweak',
    'taproot_tweak_public_key',
    'taproot_output_script',
]
