"""
Covenant PSBT - Slashable Staking and Locking Transactions

Builders for every life-cycle transition of a slashable position. The
position is locked to the tree ``[slashing, [unbonding, timelock]]`` and
then either withdrawn after its timelock, unbonded early with covenant
approval, slashed, or re-locked ("continued")::

    UTXOs -> lock -> Locked -+-> withdraw (timelock)  -> Withdrawn
                             +-> slash                -> Slashed
                             +-> continue             -> Locked
                             +-> unbond -> Unbonding -+-> withdraw (early) -> Withdrawn
                                                      +-> slash            -> Slashed

Spending builders take the prior output as a ``LockedOutput`` or an
``UnbondingOutput`` spend context, matching the stage they spend from.
"""

import dataclasses
import logging
from typing import Optional, Sequence

from covenant_scripts import (
    LOCKING_LAYOUT,
    STAKING_LAYOUT,
    ScriptError,
    SlashableScripts,
    build_data_embed_script,
    build_timelock_script,
    decompile,
    extract_timelock,
    parse_data_embed_script,
)

from ..builder import PSBTBuilder
from ..constants import DUST_THRESHOLD, TRANSACTION_VERSION
from ..exceptions import PSBTValidationError, UneconomicOutputError
from ..fees import estimate_fee
from ..outputs.taproot import TaprootTree
from ..selection import select_utxos
from ..types import LockedOutput, PsbtTransactionResult, SpendContext, UnbondingOutput, UTXO
from .common import (
    add_change_output,
    add_funding_inputs,
    add_leaf_spend_input,
    apply_lock_height,
    check_additional_amount,
    check_amount_and_fee_rate,
    check_fee_rate,
    check_lock_height,
    check_public_key,
    finish,
    lock_tree,
    output_script,
    require_context,
    slash_change_tree,
    unbonding_tree,
)


logger = logging.getLogger(__name__)


def _num_funding_outputs(scripts: SlashableScripts) -> int:
    # Lock output and change, plus the data embed output when present
    return 3 if scripts.data_embed else 2


def _add_lock_outputs(psbt: PSBTBuilder, tree: TaprootTree, amount: int, scripts: SlashableScripts) -> None:
    psbt.add_output(tree.output_script(), amount)
    if scripts.data_embed:
        psbt.add_output(scripts.data_embed, 0)


def locking_transaction(
    scripts: SlashableScripts,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes] = None,
    lock_height: Optional[int] = None
) -> PsbtTransactionResult:
    """
    Build the transaction locking ``amount`` into the position's taproot output.

    Outputs, in order: the lock output, the data embed output when
    ``scripts.data_embed`` is set, and change when it exceeds dust.

    Args:
        scripts: Leaf scripts of the position
        amount: Amount to lock in satoshis
        change_address: Address receiving the change
        utxos: All available wallet UTXOs
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte
        public_key_no_coord: Wallet internal key when the wallet is taproot
        lock_height: Optional block height before which the transaction
            cannot be mined

    Returns:
        The unsigned PSBT and its fee

    Raises:
        PSBTValidationError: On invalid amount, fee rate, address, key or
            lock height
        InsufficientFundsError: If the UTXOs cannot cover amount and fee
    """
    check_amount_and_fee_rate(amount, fee_rate)
    change_script = output_script(change_address, network, "change")
    check_public_key(public_key_no_coord)
    check_lock_height(lock_height)

    selection = select_utxos(utxos, amount, fee_rate, _num_funding_outputs(scripts))

    psbt = PSBTBuilder()
    add_funding_inputs(psbt, selection.selected_utxos, public_key_no_coord)
    _add_lock_outputs(psbt, lock_tree(scripts), amount, scripts)
    apply_lock_height(psbt, lock_height)
    change = add_change_output(psbt, selection, amount, change_script)

    return finish(psbt, change.fee, "locking")


def _withdrawal_transaction(
    tree: TaprootTree,
    timelock_script: bytes,
    context: SpendContext,
    withdrawal_address: str,
    network: str,
    fee_rate: int,
    transition: str
) -> PsbtTransactionResult:
    check_fee_rate(fee_rate, "Withdrawal feeRate")
    withdrawal_script = output_script(withdrawal_address, network, "withdrawal")
    timelock = extract_timelock(timelock_script)

    # OP_CHECKSEQUENCEVERIFY only applies to version 2 transactions
    psbt = PSBTBuilder(version=TRANSACTION_VERSION)
    add_leaf_spend_input(psbt, context, tree, timelock_script, sequence=timelock)

    # A withdrawal always has a single output
    estimated_fee = estimate_fee(fee_rate, len(psbt.inputs), 1)
    output_value = context.value - estimated_fee
    if output_value < 0:
        raise UneconomicOutputError("Output value is smaller than minimum fee")
    if output_value < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")
    psbt.add_output(withdrawal_script, output_value)

    return finish(psbt, estimated_fee, transition)


def withdraw_timelock_unbonded_transaction(
    scripts: SlashableScripts,
    context: LockedOutput,
    withdrawal_address: str,
    network: str,
    fee_rate: int
) -> PsbtTransactionResult:
    """
    Withdraw a lock output through its timelock leaf once the lock expired.

    The input sequence is the relative timelock read back from
    ``scripts.timelock``; the fee follows the heuristic model for one input
    and one output.
    """
    require_context(context, LockedOutput, "Timelock withdrawal")
    return _withdrawal_transaction(
        lock_tree(scripts), scripts.timelock, context,
        withdrawal_address, network, fee_rate, "timelock withdrawal"
    )


def withdraw_early_unbonded_transaction(
    scripts: SlashableScripts,
    context: UnbondingOutput,
    withdrawal_address: str,
    network: str,
    fee_rate: int
) -> PsbtTransactionResult:
    """Withdraw an unbonding output through its unbonding timelock leaf."""
    require_context(context, UnbondingOutput, "Early withdrawal")
    return _withdrawal_transaction(
        unbonding_tree(scripts), scripts.unbonding_timelock, context,
        withdrawal_address, network, fee_rate, "early withdrawal"
    )


def _slashing_transaction(
    scripts: SlashableScripts,
    tree: TaprootTree,
    context: SpendContext,
    slashing_address: str,
    slashing_rate: float,
    minimum_fee: int,
    network: str,
    transition: str
) -> PsbtTransactionResult:
    if slashing_rate <= 0 or minimum_fee <= 0:
        raise PSBTValidationError("Slashing rate and minimum fee must be bigger than 0")
    if slashing_rate >= 1:
        raise PSBTValidationError("Slashing rate must be less than 1")
    slashing_script = output_script(slashing_address, network, "slashing")

    slashed_value = int(context.value * slashing_rate)
    change_value = context.value - slashed_value - minimum_fee
    if change_value <= 0:
        raise UneconomicOutputError("Not enough funds to slash, lock more")
    if slashed_value <= 0:
        raise UneconomicOutputError("Slashing output value must be bigger than 0")

    psbt = PSBTBuilder()
    add_leaf_spend_input(psbt, context, tree, scripts.slashing)
    # The slashing output is exempt from the dust check
    psbt.add_output(slashing_script, slashed_value)
    psbt.add_output(slash_change_tree(scripts).output_script(), change_value)

    return finish(psbt, minimum_fee, transition)


def slash_timelock_unbonded_transaction(
    scripts: SlashableScripts,
    context: LockedOutput,
    slashing_address: str,
    slashing_rate: float,
    minimum_fee: int,
    network: str
) -> PsbtTransactionResult:
    """
    Slash a lock output through its slashing leaf.

    Outputs, in order: ``floor(value * slashing_rate)`` to the slashing
    address, then ``value - slashed - minimum_fee`` locked to the unbonding
    timelock leaf alone.

    Args:
        scripts: Leaf scripts of the position
        context: The lock output
        slashing_address: Address receiving the slashed funds
        slashing_rate: Share of the value slashed, in (0, 1)
        minimum_fee: Fee in satoshis
        network: Network name

    Returns:
        The unsigned PSBT; its fee is ``minimum_fee``

    Raises:
        PSBTValidationError: On an out of range rate or fee
        UneconomicOutputError: If nothing would be left for the change output
    """
    require_context(context, LockedOutput, "Timelock slashing")
    return _slashing_transaction(
        scripts, lock_tree(scripts), context, slashing_address,
        slashing_rate, minimum_fee, network, "timelock slashing"
    )


def slash_early_unbonded_transaction(
    scripts: SlashableScripts,
    context: UnbondingOutput,
    slashing_address: str,
    slashing_rate: float,
    minimum_fee: int,
    network: str
) -> PsbtTransactionResult:
    """Slash an unbonding output through its slashing leaf."""
    require_context(context, UnbondingOutput, "Early slashing")
    return _slashing_transaction(
        scripts, unbonding_tree(scripts), context, slashing_address,
        slashing_rate, minimum_fee, network, "early slashing"
    )


def unbonding_transaction(
    scripts: SlashableScripts,
    context: LockedOutput,
    transaction_fee: int
) -> PsbtTransactionResult:
    """
    Move a lock output into the unbonding tree through its unbonding leaf.

    The unbonding leaf needs the owner's signature and the covenant
    threshold; see ``covenant_psbt.witness.create_witness``.

    Args:
        scripts: Leaf scripts of the position
        context: The lock output
        transaction_fee: Fee in satoshis

    Returns:
        The unsigned PSBT with the single unbonding output
    """
    require_context(context, LockedOutput, "Unbonding")
    if transaction_fee <= 0:
        raise PSBTValidationError("Unbonding fee must be bigger than 0")
    output_value = context.value - transaction_fee
    if output_value < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")

    psbt = PSBTBuilder()
    add_leaf_spend_input(psbt, context, lock_tree(scripts), scripts.unbonding)
    psbt.add_output(unbonding_tree(scripts).output_script(), output_value)

    return finish(psbt, transaction_fee, "unbonding")


def _add_top_up(
    psbt: PSBTBuilder,
    scripts: SlashableScripts,
    additional_amount: int,
    change_address: Optional[str],
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: Optional[int],
    public_key_no_coord: Optional[bytes]
):
    """Select and add wallet inputs covering ``additional_amount``; returns the change result."""
    check_fee_rate(fee_rate)
    if change_address is None:
        raise PSBTValidationError("A change address is required to add funds")
    change_script = output_script(change_address, network, "change")
    check_public_key(public_key_no_coord)

    selection = select_utxos(utxos, additional_amount, fee_rate, _num_funding_outputs(scripts))
    add_funding_inputs(psbt, selection.selected_utxos, public_key_no_coord)
    return selection, change_script


# Data embed layouts that advertise the lock period
_TIMELOCK_LAYOUTS = (STAKING_LAYOUT, LOCKING_LAYOUT)


def _data_embed_with_timelock(data_embed: bytes, timelock: int) -> bytes:
    elements = decompile(data_embed)
    payload_length = len(elements[-1].data or b'') if elements else 0
    for layout in _TIMELOCK_LAYOUTS:
        if layout.payload_length == payload_length:
            payload = parse_data_embed_script(data_embed, layout)
            return build_data_embed_script(dataclasses.replace(payload, timelock=timelock), layout)
    raise PSBTValidationError("Data embed script has no timelock field")


def _relock_scripts(scripts: SlashableScripts, relock_timelock_script: Optional[bytes]) -> SlashableScripts:
    """
    Scripts committed to by a continued lock output.

    The relock leaf must be the owner's timelock leaf with a new lock
    period; the data embed output is rebuilt to advertise that period.
    """
    if relock_timelock_script is None:
        return scripts
    try:
        timelock = extract_timelock(relock_timelock_script)
    except ScriptError as e:
        raise PSBTValidationError(f"Relock timelock script is not valid: {e}") from e

    owner_key = decompile(scripts.timelock)[0].data
    if bytes(relock_timelock_script) != build_timelock_script(owner_key, timelock, len(owner_key)):
        raise PSBTValidationError("Relock timelock script is not a timelock leaf of the position owner")

    data_embed = scripts.data_embed
    if data_embed:
        data_embed = _data_embed_with_timelock(data_embed, timelock)
    logger.debug(f"Relocking position with a {timelock} block timelock")
    return dataclasses.replace(scripts, timelock=bytes(relock_timelock_script), data_embed=data_embed)


def continue_timelock_locking_transaction(
    scripts: SlashableScripts,
    context: LockedOutput,
    network: str,
    fee_rate: int,
    additional_amount: int = 0,
    change_address: Optional[str] = None,
    utxos: Sequence[UTXO] = (),
    public_key_no_coord: Optional[bytes] = None,
    lock_height: Optional[int] = None,
    relock_timelock_script: Optional[bytes] = None
) -> PsbtTransactionResult:
    """
    Re-lock an expired lock output through its timelock leaf.

    The new lock output holds ``value - estimate_fee(1 in, 1 out) +
    additional_amount`` and is committed to the same slashing and unbonding
    leaves with ``relock_timelock_script`` (defaults to the current timelock
    leaf). A new timelock leaf must belong to the position owner, and the
    data embed output then carries its lock period. Wallet UTXOs are only
    selected when ``additional_amount`` is positive; the fee then also
    covers those inputs.

    Args:
        scripts: Leaf scripts of the position
        context: The expired lock output
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte
        additional_amount: Extra satoshis to add to the position
        change_address: Address receiving change from the top-up inputs
        utxos: Wallet UTXOs for the top-up
        public_key_no_coord: Wallet internal key when the wallet is taproot
        lock_height: Optional absolute lock height
        relock_timelock_script: Timelock leaf of the new lock output

    Returns:
        The unsigned PSBT and its fee

    Raises:
        PSBTValidationError: If the relock leaf is malformed or belongs to
            another key
    """
    require_context(context, LockedOutput, "Continue timelock")
    check_fee_rate(fee_rate, "Withdrawal feeRate")
    check_additional_amount(additional_amount)
    check_lock_height(lock_height)
    new_scripts = _relock_scripts(scripts, relock_timelock_script)
    timelock = extract_timelock(scripts.timelock)

    psbt = PSBTBuilder(version=TRANSACTION_VERSION)
    add_leaf_spend_input(psbt, context, lock_tree(scripts), scripts.timelock, sequence=timelock)

    estimated_fee = estimate_fee(fee_rate, len(psbt.inputs), 1)
    amount = context.value - estimated_fee + additional_amount
    if amount < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")

    selection = None
    if additional_amount > 0:
        selection, change_script = _add_top_up(
            psbt, scripts, additional_amount, change_address, utxos,
            network, fee_rate, public_key_no_coord
        )

    _add_lock_outputs(psbt, lock_tree(new_scripts), amount, new_scripts)

    fee = estimated_fee
    if selection is not None:
        fee += add_change_output(psbt, selection, additional_amount, change_script).fee
    apply_lock_height(psbt, lock_height)

    return finish(psbt, fee, "continue timelock")


def continue_unbonding_locking_transaction(
    scripts: SlashableScripts,
    context: LockedOutput,
    transaction_fee: int,
    network: str,
    additional_amount: int = 0,
    change_address: Optional[str] = None,
    utxos: Sequence[UTXO] = (),
    fee_rate: Optional[int] = None,
    public_key_no_coord: Optional[bytes] = None,
    lock_height: Optional[int] = None
) -> PsbtTransactionResult:
    """
    Re-lock a lock output through its unbonding leaf.

    The covenant threshold has to be met by the signers, as for
    ``unbonding_transaction``. The new lock output holds
    ``value - transaction_fee + additional_amount``. A positive
    ``additional_amount`` is funded from ``utxos`` at ``fee_rate`` and the
    returned fee is ``transaction_fee`` plus the fee of those inputs.

    Args:
        scripts: Leaf scripts of the position
        context: The lock output
        transaction_fee: Fee in satoshis for spending the lock output
        network: Network name
        additional_amount: Extra satoshis to add to the position
        change_address: Address receiving change from the top-up inputs
        utxos: Wallet UTXOs for the top-up
        fee_rate: Fee rate for the top-up inputs
        public_key_no_coord: Wallet internal key when the wallet is taproot
        lock_height: Optional absolute lock height

    Returns:
        The unsigned PSBT and its fee
    """
    require_context(context, LockedOutput, "Continue unbonding")
    if transaction_fee <= 0:
        raise PSBTValidationError("Unbonding fee must be bigger than 0")
    check_additional_amount(additional_amount)
    check_lock_height(lock_height)

    amount = context.value - transaction_fee + additional_amount
    if amount < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")

    psbt = PSBTBuilder()
    add_leaf_spend_input(psbt, context, lock_tree(scripts), scripts.unbonding)

    selection = None
    if additional_amount > 0:
        selection, change_script = _add_top_up(
            psbt, scripts, additional_amount, change_address, utxos,
            network, fee_rate, public_key_no_coord
        )

    _add_lock_outputs(psbt, lock_tree(scripts), amount, scripts)

    fee = transaction_fee
    if selection is not None:
        fee += add_change_output(psbt, selection, additional_amount, change_script).fee
    apply_lock_height(psbt, lock_height)

    return finish(psbt, fee, "continue unbonding")


__all__ = [
    'locking_transaction',
    'unbonding_transaction',
    'withdraw_timelock_unbonded_transaction',
    'withdraw_early_unbonded_transaction',
    'slash_timelock_unbonded_transaction',
    'slash_early_unbonded_transaction',
    'continue_timelock_locking_transaction',
    'continue_unbonding_locking_transaction',
]
