"""
Cryptographic Exceptions for Covenant PSBT

This module defines custom exceptions for key handling and taproot tweaking.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass
