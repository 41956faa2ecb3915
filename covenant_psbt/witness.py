"""
Covenant PSBT - Witness Composition

Helpers to finish covenant-authorized spends once signatures have been
collected. The unbonding and slashing leaves check covenant signatures
with ``OP_CHECKSIGADD`` over keys sorted ascending, so the matching
signatures are pushed in descending key order, with an empty element for
every covenant member that did not sign.
"""

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .exceptions import PSBTValidationError
from .utils import serialize_witness_stack


@dataclass(frozen=True)
class CovenantSignature:
    """A covenant member's signature, keyed by the member's public key (hex)."""
    btc_pk_hex: str
    sig_hex: str

    def __post_init__(self):
        try:
            bytes.fromhex(self.btc_pk_hex)
            bytes.fromhex(self.sig_hex)
        except ValueError as e:
            raise PSBTValidationError(f"Invalid covenant signature encoding: {e}") from e


def create_witness(
    original_witness: Sequence[bytes],
    covenant_keys: Iterable[bytes],
    covenant_signatures: Iterable[CovenantSignature]
) -> List[bytes]:
    """
    Prepend covenant signatures to a signed witness stack.

    Args:
        original_witness: Witness already produced by the owner's signer
            (signature, leaf script, control block)
        covenant_keys: Every covenant key the leaf script was built with
        covenant_signatures: Signatures received from covenant members

    Returns:
        Witness stack ``covenant signatures (descending key order) + original``
    """
    signatures = {}
    for sig in covenant_signatures:
        signatures[bytes.fromhex(sig.btc_pk_hex)] = bytes.fromhex(sig.sig_hex)

    composed = [
        signatures.get(bytes(key), b'')
        for key in sorted((bytes(k) for k in covenant_keys), reverse=True)
    ]
    return composed + [bytes(item) for item in original_witness]


def witness_stack_to_script_witness(witness: Sequence[bytes]) -> bytes:
    """Serialize a witness stack for the final script witness field of a PSBT input."""
    return serialize_witness_stack(witness)


__all__ = [
    'CovenantSignature',
    'create_witness',
    'witness_stack_to_script_witness',
]
