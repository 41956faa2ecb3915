"""
Covenant PSBT - Value Types

Immutable inputs and results of the transaction builders: wallet UTXOs,
the spend contexts describing a prior protocol output, and the
``(psbt, fee)`` result pair.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from .exceptions import PSBTValidationError
from .utils import parse_raw_transaction

if TYPE_CHECKING:
    from .builder import PSBTBuilder


@dataclass(frozen=True)
class UTXO:
    """
    A spendable wallet output.

    Attributes:
        txid: Funding transaction ID (hex, display byte order)
        vout: Output index
        value: Value in satoshis
        script_pubkey: Locking script as hex
        raw_transaction: Optional full funding transaction as hex
        redeem_script: Optional redeem script for P2SH-wrapped inputs
    """
    txid: str
    vout: int
    value: int
    script_pubkey: str
    raw_transaction: Optional[str] = None
    redeem_script: Optional[bytes] = None

    @property
    def script_bytes(self) -> bytes:
        return bytes.fromhex(self.script_pubkey)


@dataclass(frozen=True)
class _PriorOutput:
    txid: str
    vout: int
    value: int
    script_pubkey: bytes

    def __post_init__(self):
        if self.vout < 0:
            raise PSBTValidationError("Output index is out of bounds")
        if self.value <= 0:
            raise PSBTValidationError("Output value must be bigger than 0")
        object.__setattr__(self, 'script_pubkey', bytes(self.script_pubkey))

    @classmethod
    def from_raw_transaction(cls, raw_tx: str, vout: int = 0):
        """
        Bind an output of a serialized prior transaction.

        Args:
            raw_tx: Raw transaction hex
            vout: Index of the protocol output

        Returns:
            Spend context for that output
        """
        try:
            tx = parse_raw_transaction(bytes.fromhex(raw_tx))
        except ValueError as e:
            raise PSBTValidationError(f"Invalid raw transaction: {e}") from e
        if vout < 0 or vout >= len(tx.outputs):
            raise PSBTValidationError("Output index is out of bounds")
        output = tx.outputs[vout]
        return cls(txid=tx.txid, vout=vout, value=output.value, script_pubkey=output.lock_script)

    @classmethod
    def from_psbt(cls, psbt: 'PSBTBuilder', vout: int = 0):
        """Bind an output of a PSBT built by this package (once it is signed and mined)."""
        if vout < 0 or vout >= len(psbt.outputs):
            raise PSBTValidationError("Output index is out of bounds")
        output = psbt.outputs[vout]
        return cls(
            txid=psbt.get_transaction_id(),
            vout=vout,
            value=output.value,
            script_pubkey=output.script,
        )


@dataclass(frozen=True)
class LockedOutput(_PriorOutput):
    """A lock (or bridge deposit) output still committed to its full script tree."""
    pass


@dataclass(frozen=True)
class UnbondingOutput(_PriorOutput):
    """The output of an unbonding transaction, committed to the unbonding tree."""
    pass


SpendContext = Union[LockedOutput, UnbondingOutput]


@dataclass
class PsbtTransactionResult:
    """An unsigned PSBT and the exact fee it pays."""
    psbt: 'PSBTBuilder'
    fee: int
