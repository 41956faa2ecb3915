"""
Covenant PSBT - Exceptions

This module defines custom exceptions for PSBT construction, coin selection
and fee estimation.
"""


class PSBTError(Exception):
    """Base exception for PSBT-related errors."""
    pass


class PSBTConstructionError(PSBTError):
    """Exception raised during PSBT construction."""
    pass


class PSBTValidationError(PSBTError):
    """Exception raised when builder parameters or PSBT validation fail."""
    pass


class InvalidAddressError(PSBTValidationError):
    """Exception raised when an address cannot be decoded for the network."""
    pass


class InvalidScriptError(PSBTError):
    """Exception raised for invalid script operations."""
    pass


class InsufficientFundsError(PSBTError):
    """Exception raised when transaction inputs are insufficient to cover outputs and fees."""

    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        if message is None:
            message = f"Insufficient funds: required {required} satoshis, available {available} satoshis"
        super().__init__(message)


class FeeEstimationError(InsufficientFundsError):
    """Exception raised when no fee estimate can be produced (empty UTXO set)."""

    def __init__(self, message: str = "Unable to calculate fee"):
        super().__init__(0, 0, message)


class UneconomicOutputError(PSBTError):
    """Exception raised when an output would be negative or below dust after fees."""
    pass
