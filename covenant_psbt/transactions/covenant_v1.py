"""
Covenant PSBT - Single-Script Covenant Transactions

Builders for the single-script covenant generation, where each protocol
output is a P2WSH output locked by exactly one witness script (see
``covenant_scripts.covenant_v1``). Funding transactions use the
script-aware fee model and spends use the withdrawal fee model.
"""

import logging
from typing import Optional, Sequence

from covenant_scripts import extract_timelock, read_number_operand
from covenant_scripts.covenant_v1 import (
    LOCKING_SCRIPT_TIMELOCK_POSITION,
    PRE_DEPOSIT_LOCK_HEIGHT_POSITION,
)

from ..builder import PSBTBuilder
from ..constants import (
    DUST_THRESHOLD,
    LOCKTIME_ENABLED_SEQUENCE,
    LOCKTIME_HEIGHT_TIME_CUTOFF,
    TRANSACTION_VERSION,
)
from ..exceptions import PSBTValidationError, UneconomicOutputError
from ..fees import get_withdraw_tx_fee
from ..outputs.p2wsh import create_p2wsh_output
from ..selection import select_utxos_script_aware
from ..types import LockedOutput, PsbtTransactionResult, UTXO
from .common import (
    add_change_output,
    add_funding_inputs,
    add_witness_script_input,
    apply_lock_height,
    check_amount_and_fee_rate,
    check_fee_rate,
    check_lock_height,
    check_public_key,
    finish,
    output_script,
    require_context,
)


logger = logging.getLogger(__name__)


def _fund_p2wsh_output(
    witness_script: bytes,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes],
    lock_height: Optional[int],
    data_embed: Optional[bytes],
    transition: str
) -> PsbtTransactionResult:
    check_amount_and_fee_rate(amount, fee_rate)
    change_script = output_script(change_address, network, "change")
    check_public_key(public_key_no_coord)
    check_lock_height(lock_height)
    p2wsh_script, witness_script = create_p2wsh_output(witness_script)

    output_scripts = [p2wsh_script]
    if data_embed:
        output_scripts.append(data_embed)
    selection = select_utxos_script_aware(utxos, amount, fee_rate, output_scripts)

    psbt = PSBTBuilder()
    add_funding_inputs(psbt, selection.selected_utxos, public_key_no_coord)
    psbt.add_output(p2wsh_script, amount, witness_script=witness_script)
    if data_embed:
        psbt.add_output(data_embed, 0)
    apply_lock_height(psbt, lock_height)
    change = add_change_output(psbt, selection, amount, change_script)

    return finish(psbt, change.fee, transition)


def covenant_locking_transaction(
    locking_script: bytes,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes] = None,
    lock_height: Optional[int] = None
) -> PsbtTransactionResult:
    """
    Lock ``amount`` to the P2WSH output of a covenant locking script.

    Also used for pre-deposit locking scripts. The output carries its
    witness script.

    Args:
        locking_script: Witness script of the lock output
        amount: Amount to lock in satoshis
        change_address: Address receiving the change
        utxos: All available wallet UTXOs
        network: Network name
        fee_rate: Fee rate in satoshis per vbyte
        public_key_no_coord: Wallet internal key when the wallet is taproot
        lock_height: Optional absolute lock height

    Returns:
        The unsigned PSBT and its fee
    """
    return _fund_p2wsh_output(
        locking_script, amount, change_address, utxos, network, fee_rate,
        public_key_no_coord, lock_height, None, "covenant locking"
    )


def covenant_deposit_transaction(
    deposit_script: bytes,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: int,
    public_key_no_coord: Optional[bytes] = None,
    data_embed: Optional[bytes] = None
) -> PsbtTransactionResult:
    """Deposit ``amount`` to the P2WSH output of a covenant deposit script."""
    return _fund_p2wsh_output(
        deposit_script, amount, change_address, utxos, network, fee_rate,
        public_key_no_coord, None, data_embed, "covenant deposit"
    )


def covenant_send_transaction(
    deposit_script: bytes,
    context: LockedOutput,
    send_address: str,
    minimum_fee: int,
    network: str
) -> PsbtTransactionResult:
    """Spend a covenant deposit output, paying ``value - minimum_fee``."""
    require_context(context, LockedOutput, "Covenant send")
    if minimum_fee <= 0:
        raise PSBTValidationError("Minimum fee must be bigger than 0")
    if minimum_fee >= context.value:
        raise PSBTValidationError("Minimum fee must be less than the output value")
    if context.value - minimum_fee < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")
    send_script = output_script(send_address, network, "send")

    psbt = PSBTBuilder()
    add_witness_script_input(psbt, context, deposit_script)
    psbt.add_output(send_script, context.value - minimum_fee)

    return finish(psbt, minimum_fee, "covenant send")


def _withdraw(
    psbt: PSBTBuilder,
    context: LockedOutput,
    withdrawal_script: bytes,
    fee_rate: int,
    transition: str
) -> PsbtTransactionResult:
    estimated_fee = get_withdraw_tx_fee(fee_rate, context.script_pubkey)
    output_value = context.value - estimated_fee
    if output_value < 0:
        raise UneconomicOutputError("Output value is smaller than minimum fee")
    if output_value < DUST_THRESHOLD:
        raise UneconomicOutputError("Output value is smaller than dust")
    psbt.add_output(withdrawal_script, output_value)
    return finish(psbt, estimated_fee, transition)


def withdraw_timelock_transaction(
    locking_script: bytes,
    context: LockedOutput,
    withdrawal_address: str,
    fee_rate: int,
    network: str
) -> PsbtTransactionResult:
    """
    Withdraw a covenant lock output through its owner path after the timelock.

    The relative timelock is read from the locking script and becomes the
    input sequence.
    """
    require_context(context, LockedOutput, "Covenant timelock withdrawal")
    check_fee_rate(fee_rate)
    withdrawal_script = output_script(withdrawal_address, network, "withdrawal")
    timelock = extract_timelock(locking_script, LOCKING_SCRIPT_TIMELOCK_POSITION)

    psbt = PSBTBuilder(version=TRANSACTION_VERSION)
    add_witness_script_input(psbt, context, locking_script, sequence=timelock)
    return _withdraw(psbt, context, withdrawal_script, fee_rate, "covenant timelock withdrawal")


def withdraw_unbonding_transaction(
    locking_script: bytes,
    context: LockedOutput,
    withdrawal_address: str,
    fee_rate: int,
    network: str
) -> PsbtTransactionResult:
    """Withdraw a covenant lock output through its cooperative 2-of-2 path."""
    require_context(context, LockedOutput, "Covenant unbonding withdrawal")
    check_fee_rate(fee_rate)
    withdrawal_script = output_script(withdrawal_address, network, "withdrawal")

    psbt = PSBTBuilder()
    add_witness_script_input(psbt, context, locking_script)
    return _withdraw(psbt, context, withdrawal_script, fee_rate, "covenant unbonding withdrawal")


def withdraw_pre_deposit_transaction(
    pre_deposit_script: bytes,
    context: LockedOutput,
    withdrawal_address: str,
    fee_rate: int,
    network: str,
    current_height: Optional[int] = None
) -> PsbtTransactionResult:
    """
    Withdraw a pre-deposit lock output once the chain reached its lock height.

    ``OP_CHECKLOCKTIMEVERIFY`` needs a non-final sequence and a locktime at
    or above the lock height committed in the script.

    Args:
        pre_deposit_script: Witness script of the pre-deposit output
        context: The pre-deposit output
        withdrawal_address: Address receiving the funds
        fee_rate: Fee rate in satoshis per vbyte
        network: Network name
        current_height: Locktime to use instead of the lock height, e.g. the
            current chain tip; must not be below the lock height

    Returns:
        The unsigned PSBT and its fee
    """
    require_context(context, LockedOutput, "Pre-deposit withdrawal")
    check_fee_rate(fee_rate)
    withdrawal_script = output_script(withdrawal_address, network, "withdrawal")
    lock_height = read_number_operand(pre_deposit_script, PRE_DEPOSIT_LOCK_HEIGHT_POSITION, max_length=5)
    if not 0 < lock_height < LOCKTIME_HEIGHT_TIME_CUTOFF:
        raise PSBTValidationError("Invalid lock height")

    locktime = lock_height
    if current_height is not None:
        check_lock_height(current_height)
        if current_height < lock_height:
            raise PSBTValidationError(
                f"Current height {current_height} is below the lock height {lock_height}"
            )
        locktime = current_height

    psbt = PSBTBuilder()
    add_witness_script_input(psbt, context, pre_deposit_script, sequence=LOCKTIME_ENABLED_SEQUENCE)
    apply_lock_height(psbt, locktime)
    return _withdraw(psbt, context, withdrawal_script, fee_rate, "pre-deposit withdrawal")


__all__ = [
    'covenant_locking_transaction',
    'covenant_deposit_transaction',
    'covenant_send_transaction',
    'withdraw_timelock_transaction',
    'withdraw_unbonding_transaction',
    'withdraw_pre_deposit_transaction',
]
