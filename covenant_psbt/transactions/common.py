"""
Covenant PSBT - Shared Transaction Building Blocks

Fixed taproot tree layouts, precondition checks and the input/output
plumbing every transaction builder goes through. The tree layouts must
match the ones used when the spent output's address was derived, so each
purpose has exactly one layout here.
"""

import logging
from typing import Iterable, Optional, Type

from covenant_crypto import NUMS_INTERNAL_KEY_XONLY
from covenant_scripts import BridgeScripts, SlashableScripts

from ..address import address_to_output_script
from ..builder import PSBTBuilder
from ..constants import (
    DUST_THRESHOLD,
    FINAL_SEQUENCE,
    LOCKTIME_HEIGHT_TIME_CUTOFF,
    RBF_SEQUENCE,
    X_ONLY_PK_LENGTH,
)
from ..exceptions import PSBTConstructionError, PSBTValidationError, UneconomicOutputError
from ..outputs.taproot import TaprootTree
from ..selection import ChangeResult, CoinSelection, apply_change_policy
from ..types import PsbtTransactionResult, SpendContext, UTXO
from ..utils import create_p2wsh_script


logger = logging.getLogger(__name__)


def lock_tree(scripts: SlashableScripts, timelock_script: Optional[bytes] = None) -> TaprootTree:
    """Lock output tree ``[slashing, [unbonding, timelock]]``."""
    timelock = scripts.timelock if timelock_script is None else timelock_script
    return TaprootTree([scripts.slashing, [scripts.unbonding, timelock]])


def unbonding_tree(scripts: SlashableScripts) -> TaprootTree:
    """Unbonding output tree ``[slashing, unbonding_timelock]``."""
    return TaprootTree([scripts.slashing, scripts.unbonding_timelock])


def slash_change_tree(scripts: SlashableScripts) -> TaprootTree:
    """Slashing change output: the unbonding timelock leaf alone."""
    return TaprootTree(scripts.unbonding_timelock)


def bridge_tree(scripts: BridgeScripts) -> TaprootTree:
    """Bridge deposit output tree ``[transfer, timelock]``."""
    return TaprootTree([scripts.transfer, scripts.timelock])


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def check_amount_and_fee_rate(amount: int, fee_rate: int) -> None:
    """Funding builders never create a protocol output below the dust limit."""
    if not _is_positive_int(amount) or not _is_positive_int(fee_rate):
        raise PSBTValidationError("Amount and fee rate must be non-negative integers greater than 0")
    if amount < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")


def check_fee_rate(fee_rate: int, label: str = "Fee rate") -> None:
    if not _is_positive_int(fee_rate):
        raise PSBTValidationError(f"{label} must be bigger than 0")


def check_public_key(public_key_no_coord: Optional[bytes]) -> None:
    """Funding inputs of taproot wallets carry the wallet's 32-byte internal key."""
    if public_key_no_coord is not None and len(public_key_no_coord) != X_ONLY_PK_LENGTH:
        raise PSBTValidationError("Invalid public key")


def check_lock_height(lock_height: Optional[int]) -> None:
    """Only height based absolute locktimes are accepted."""
    if lock_height is None:
        return
    if not isinstance(lock_height, int) or lock_height < 0 or lock_height >= LOCKTIME_HEIGHT_TIME_CUTOFF:
        raise PSBTValidationError("Invalid lock height")


def check_additional_amount(additional_amount: int) -> None:
    if not isinstance(additional_amount, int) or additional_amount < 0:
        raise PSBTValidationError("Additional amount must be a non-negative integer")


def apply_lock_height(psbt: PSBTBuilder, lock_height: Optional[int]) -> None:
    if lock_height:
        psbt.set_locktime(lock_height)


def output_script(address: str, network: str, label: str) -> bytes:
    """Decode a caller supplied address, naming it in the error."""
    try:
        return address_to_output_script(address, network)
    except PSBTValidationError as e:
        raise type(e)(f"Invalid {label} address: {e}") from e


def add_funding_inputs(
    psbt: PSBTBuilder,
    utxos: Iterable[UTXO],
    public_key_no_coord: Optional[bytes] = None
) -> None:
    """
    Add wallet UTXOs as replaceable funding inputs.

    Args:
        psbt: PSBT under construction
        utxos: Selected UTXOs
        public_key_no_coord: Wallet internal key when the wallet is taproot
    """
    for utxo in utxos:
        psbt.add_input(
            txid=utxo.txid,
            vout=utxo.vout,
            value=utxo.value,
            script_pubkey=utxo.script_bytes,
            sequence=RBF_SEQUENCE,
            non_witness_utxo=bytes.fromhex(utxo.raw_transaction) if utxo.raw_transaction else None,
            redeem_script=utxo.redeem_script,
            tap_internal_key=public_key_no_coord,
        )


def require_context(context: SpendContext, expected: Type, transition: str) -> None:
    """Reject spend contexts of the wrong life-cycle stage."""
    if not isinstance(context, expected):
        raise PSBTValidationError(
            f"{transition} spends a {expected.__name__}, got {type(context).__name__}"
        )


def require_script_pubkey(context: SpendContext, script_pubkey: bytes) -> None:
    """Reject a prior output not locked to the script the builder derives."""
    if context.script_pubkey != script_pubkey:
        raise PSBTValidationError("Spent output script does not match the provided scripts")


def add_leaf_spend_input(
    psbt: PSBTBuilder,
    context: SpendContext,
    tree: TaprootTree,
    leaf_script: bytes,
    sequence: int = FINAL_SEQUENCE
) -> None:
    """
    Spend a prior taproot output through one of its script leaves.

    The input carries the tapleaf script with its control block and the
    NUMS internal key the tree was committed under.
    """
    require_script_pubkey(context, tree.output_script())
    psbt.add_input(
        txid=context.txid,
        vout=context.vout,
        value=context.value,
        script_pubkey=context.script_pubkey,
        sequence=sequence,
        tap_leaf_script=tree.tap_leaf_script(leaf_script),
        tap_internal_key=NUMS_INTERNAL_KEY_XONLY,
    )


def add_witness_script_input(
    psbt: PSBTBuilder,
    context: SpendContext,
    witness_script: bytes,
    sequence: int = FINAL_SEQUENCE
) -> None:
    """Spend a prior P2WSH output, attaching its witness script."""
    require_script_pubkey(context, create_p2wsh_script(witness_script))
    psbt.add_input(
        txid=context.txid,
        vout=context.vout,
        value=context.value,
        script_pubkey=context.script_pubkey,
        sequence=sequence,
        witness_script=witness_script,
    )


def add_change_output(
    psbt: PSBTBuilder,
    selection: CoinSelection,
    amount: int,
    change_script: bytes
) -> ChangeResult:
    """Add the change output when it is above dust; otherwise fold it into the fee."""
    result = apply_change_policy(selection, amount)
    if result.has_change:
        psbt.add_output(change_script, result.change)
    return result


def finish(psbt: PSBTBuilder, fee: int, transition: str) -> PsbtTransactionResult:
    """Check that the declared fee is what the PSBT actually pays and wrap it up."""
    actual = psbt.fee()
    if actual != fee:
        raise PSBTConstructionError(f"{transition}: declared fee {fee} does not match actual fee {actual}")
    logger.info(
        f"Built {transition} transaction {psbt.get_transaction_id()}: "
        f"{len(psbt.inputs)} inputs, {len(psbt.outputs)} outputs, fee {fee}"
    )
    return PsbtTransactionResult(psbt=psbt, fee=fee)


__all__ = [
    'lock_tree',
    'unbonding_tree',
    'slash_change_tree',
    'bridge_tree',
    'check_amount_and_fee_rate',
    'check_fee_rate',
    'check_public_key',
    'check_lock_height',
    'check_additional_amount',
    'apply_lock_height',
    'output_script',
    'add_funding_inputs',
    'require_context',
    'require_script_pubkey',
    'add_leaf_spend_input',
    'add_witness_script_input',
    'add_change_output',
    'finish',
]
