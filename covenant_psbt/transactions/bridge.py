"""
Covenant PSBT - Bridge Transactions

Deposits into the bridge and their spends. A taproot deposit is locked to
``[transfer, timelock]``: the covenant committee moves it through the
transfer leaf, and the depositor recaptures it through the timelock leaf
once the timelock expired. Deposits to an m-of-n P2WSH multisig and to a
fixed bridge address are supported as well.
"""

import logging
from typing import List, Optional, Sequence

from covenant_scripts import BridgeScripts, extract_timelock

from ..builder import PSBTBuilder
from ..constants import DUST_THRESHOLD, TRANSACTION_VERSION
from ..exceptions import PSBTValidationError, UneconomicOutputError
from ..fees import estimate_fee
from ..outputs.p2wsh import create_multisig_script, create_p2wsh_output
from ..selection import select_utxos, select_utxos_script_aware
from ..types import LockedOutput, PsbtTransactionResult, UTXO
from .common import (
    add_change_output,
    add_funding_inputs,
    add_leaf_spend_input,
    add_witness_script_input,
    apply_lock_height,
    bridge_tree,
    check_amount_and_fee_rate,
    check_fee_rate,
    check_lock_height,
    check_public_key,
    finish,
    output_script,
    require_context,
)


logger = logging.getLogger(__name__)


def _check_minimum_fee(minimum_fee: int, value: int) -> None:
    if minimum_fee <= 0:
        raise PSBTValidationError("Minimum fee must be bigger than 0")
    if minimum_fee >= value:
        raise PSBTValidationError("Minimum fee must be less than the output value")
    if value - minimum_fee < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")


def deposit_transaction(
    scripts: BridgeScripts,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes] = None,
    lock_height: Optional[int] = None
) -> PsbtTransactionResult:
    """
    Deposit ``amount`` into the bridge taproot output.

    Outputs, in order: the deposit output, the data embed output when
    ``scripts.data_embed`` is set, and change when it exceeds dust.

    Args:
        scripts: Leaf scripts of the deposit
        amount: Amount to deposit in satoshis
        change_address: Address receiving the change
        utxos: All available wallet UTXOs
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte
        public_key_no_coord: Wallet internal key when the wallet is taproot
        lock_height: Optional absolute lock height

    Returns:
        The unsigned PSBT and its fee
    """
    check_amount_and_fee_rate(amount, fee_rate)
    change_script = output_script(change_address, network, "change")
    check_public_key(public_key_no_coord)
    check_lock_height(lock_height)

    has_data_embed = bool(scripts.data_embed)
    selection = select_utxos(
        utxos, amount, fee_rate, 3 if has_data_embed else 2, has_op_return=has_data_embed
    )

    psbt = PSBTBuilder()
    add_funding_inputs(psbt, selection.selected_utxos, public_key_no_coord)
    psbt.add_output(bridge_tree(scripts).output_script(), amount)
    if has_data_embed:
        psbt.add_output(scripts.data_embed, 0)
    apply_lock_height(psbt, lock_height)
    change = add_change_output(psbt, selection, amount, change_script)

    return finish(psbt, change.fee, "bridge deposit")


def send_transaction(
    scripts: BridgeScripts,
    context: LockedOutput,
    send_address: str,
    minimum_fee: int,
    network: str
) -> PsbtTransactionResult:
    """
    Move a bridge deposit through its transfer leaf.

    The transfer leaf is the covenant committee's multi-key clause; the
    single output receives ``value - minimum_fee``.
    """
    require_context(context, LockedOutput, "Bridge send")
    _check_minimum_fee(minimum_fee, context.value)
    send_script = output_script(send_address, network, "send")

    psbt = PSBTBuilder()
    add_leaf_spend_input(psbt, context, bridge_tree(scripts), scripts.transfer)
    psbt.add_output(send_script, context.value - minimum_fee)

    return finish(psbt, minimum_fee, "bridge send")


def recapture_transfer_timelock_transaction(
    scripts: BridgeScripts,
    context: LockedOutput,
    recapture_address: str,
    network: str,
    fee_rate: int
) -> PsbtTransactionResult:
    """
    Return an unclaimed bridge deposit to the depositor through the timelock leaf.

    The input sequence is the relative timelock of ``scripts.timelock``;
    the fee follows the heuristic model for one input and one output.

    Args:
        scripts: Leaf scripts of the deposit
        context: The deposit output
        recapture_address: Address receiving the funds
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte

    Returns:
        The unsigned PSBT and its fee
    """
    require_context(context, LockedOutput, "Recapture")
    check_fee_rate(fee_rate, "Recapture feeRate")
    recapture_script = output_script(recapture_address, network, "recapture")
    timelock = extract_timelock(scripts.timelock)

    psbt = PSBTBuilder(version=TRANSACTION_VERSION)
    add_leaf_spend_input(psbt, context, bridge_tree(scripts), scripts.timelock, sequence=timelock)

    estimated_fee = estimate_fee(fee_rate, len(psbt.inputs), 1)
    output_value = context.value - estimated_fee
    if output_value < 0:
        raise UneconomicOutputError("Output value is smaller than minimum fee")
    if output_value < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")
    psbt.add_output(recapture_script, output_value)

    return finish(psbt, estimated_fee, "recapture")


def deposit_p2wsh_multisig_transaction(
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_keys: List[bytes],
    required_sigs: int,
    data_embed: Optional[bytes] = None
) -> PsbtTransactionResult:
    """
    Deposit ``amount`` to an m-of-n P2WSH multisig.

    The deposit output carries its witness script so that the committee
    can reconstruct the spend. Keys are committed in the order given.

    Args:
        amount: Amount to deposit in satoshis
        change_address: Address receiving the change
        utxos: All available wallet UTXOs
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte
        public_keys: Compressed public keys of the committee
        required_sigs: Number of signatures required (m)
        data_embed: Optional OP_RETURN output script

    Returns:
        The unsigned PSBT and its fee
    """
    check_amount_and_fee_rate(amount, fee_rate)
    change_script = output_script(change_address, network, "change")
    deposit_script, witness_script = create_p2wsh_output(
        create_multisig_script(required_sigs, public_keys)
    )

    selection = select_utxos(utxos, amount, fee_rate, 3 if data_embed else 2)

    psbt = PSBTBuilder()
    add_funding_inputs(psbt, selection.selected_utxos)
    psbt.add_output(deposit_script, amount, witness_script=witness_script)
    if data_embed:
        psbt.add_output(data_embed, 0)
    change = add_change_output(psbt, selection, amount, change_script)

    return finish(psbt, change.fee, "multisig deposit")


def send_p2wsh_multisig_transaction(
    context: LockedOutput,
    send_address: str,
    minimum_fee: int,
    network: str,
    public_keys: List[bytes],
    required_sigs: int
) -> PsbtTransactionResult:
    """Spend an m-of-n P2WSH multisig deposit, paying ``value - minimum_fee``."""
    require_context(context, LockedOutput, "Multisig send")
    _check_minimum_fee(minimum_fee, context.value)
    send_script = output_script(send_address, network, "send")
    witness_script = create_multisig_script(required_sigs, public_keys)

    psbt = PSBTBuilder()
    add_witness_script_input(psbt, context, witness_script)
    psbt.add_output(send_script, context.value - minimum_fee)

    return finish(psbt, minimum_fee, "multisig send")


def deposit_to_fixed_address_transaction(
    data_embed: bytes,
    amount: int,
    fixed_address: str,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes] = None
) -> PsbtTransactionResult:
    """
    Deposit ``amount`` to a fixed bridge address, tagged by a data embed output.

    Uses the script-aware fee model: the outputs are the fixed address
    output followed by ``data_embed``, plus change when it exceeds dust.
    """
    check_amount_and_fee_rate(amount, fee_rate)
    check_public_key(public_key_no_coord)
    fixed_script = output_script(fixed_address, network, "deposit")
    change_script = output_script(change_address, network, "change")
    if not data_embed:
        raise PSBTValidationError("A data embed script is required")

    selection = select_utxos_script_aware(utxos, amount, fee_rate, [fixed_script, data_embed])

    psbt = PSBTBuilder()
    add_funding_inputs(psbt, selection.selected_utxos, public_key_no_coord)
    psbt.add_output(fixed_script, amount)
    psbt.add_output(data_embed, 0)
    change = add_change_output(psbt, selection, amount, change_script)

    return finish(psbt, change.fee, "fixed address deposit")


__all__ = [
    'deposit_transaction',
    'send_transaction',
    'recapture_transfer_timelock_transaction',
    'deposit_p2wsh_multisig_transaction',
    'send_p2wsh_multisig_transaction',
    'deposit_to_fixed_address_transaction',
]
