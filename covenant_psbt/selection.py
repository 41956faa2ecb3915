"""
Covenant PSBT - Coin Selection

Greedy largest-first UTXO selection coupled to one of the fee models. The
fee is re-estimated after every added UTXO because it grows with the input
count. Selection always works on a private sorted copy; the caller's list
is never reordered.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .constants import DUST_THRESHOLD
from .exceptions import FeeEstimationError, InsufficientFundsError
from .fees import estimate_fee, estimate_script_aware_fee, input_value_sum
from .types import UTXO


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoinSelection:
    """
    Result of a coin selection.

    Attributes:
        selected_utxos: UTXOs to spend, largest first
        fee: Estimated fee the selection was made against
    """
    selected_utxos: List[UTXO]
    fee: int

    @property
    def total_value(self) -> int:
        return input_value_sum(self.selected_utxos)


@dataclass(frozen=True)
class ChangeResult:
    """
    Outcome of the change policy.

    Attributes:
        change: Value of the change output, or 0 when none is emitted
        fee: Final fee, including any folded dust
    """
    change: int
    fee: int

    @property
    def has_change(self) -> bool:
        return self.change > 0


def _sorted_copy(utxos: Sequence[UTXO]) -> List[UTXO]:
    return sorted(utxos, key=lambda utxo: utxo.value, reverse=True)


def _check_selection(selected: List[UTXO], amount: int, fee: Optional[int]) -> CoinSelection:
    if fee is None:
        raise FeeEstimationError()
    accumulated = input_value_sum(selected)
    if accumulated < amount + fee:
        raise InsufficientFundsError(
            amount + fee,
            accumulated,
            "Insufficient funds: unable to gather enough UTXOs to cover the amount and fees"
        )
    logger.debug(f"Selected {len(selected)} UTXOs worth {accumulated} for {amount} + fee {fee}")
    return CoinSelection(selected_utxos=selected, fee=fee)


def select_utxos(
    utxos: Sequence[UTXO],
    amount: int,
    fee_rate: int,
    num_outputs: int,
    has_op_return: bool = False
) -> CoinSelection:
    """
    Select UTXOs under the heuristic fee model.

    Args:
        utxos: Available UTXOs
        amount: Amount the selection must cover besides the fee
        fee_rate: Fee rate in satoshis per vbyte
        num_outputs: Number of outputs the transaction will have
        has_op_return: Whether one of the outputs is an OP_RETURN

    Returns:
        Selected UTXOs and the fee

    Raises:
        FeeEstimationError: If ``utxos`` is empty
        InsufficientFundsError: If all UTXOs together do not cover amount and fee
    """
    selected: List[UTXO] = []
    accumulated = 0
    fee = None
    for utxo in _sorted_copy(utxos):
        selected.append(utxo)
        accumulated += utxo.value
        fee = estimate_fee(fee_rate, len(selected), num_outputs, has_op_return)
        if accumulated >= amount + fee:
            break
    return _check_selection(selected, amount, fee)


def select_utxos_script_aware(
    utxos: Sequence[UTXO],
    amount: int,
    fee_rate: int,
    output_scripts: Sequence[bytes]
) -> CoinSelection:
    """
    Select UTXOs under the script-aware fee model.

    Args:
        utxos: Available UTXOs
        amount: Amount the selection must cover besides the fee
        fee_rate: Fee rate in satoshis per vbyte
        output_scripts: Scripts of the outputs, excluding change

    Returns:
        Selected UTXOs and the fee

    Raises:
        FeeEstimationError: If ``utxos`` is empty
        InsufficientFundsError: If all UTXOs together do not cover amount and fee
    """
    selected: List[UTXO] = []
    accumulated = 0
    fee = None
    for utxo in _sorted_copy(utxos):
        selected.append(utxo)
        accumulated += utxo.value
        fee = estimate_script_aware_fee(selected, output_scripts, fee_rate, amount)
        if accumulated >= amount + fee:
            break
    return _check_selection(selected, amount, fee)


def apply_change_policy(selection: CoinSelection, amount: int) -> ChangeResult:
    """
    Decide between a change output and folding the remainder into the fee.

    A change output is only emitted above the dust threshold, so no builder
    ever creates a dust output.
    """
    change = selection.total_value - (amount + selection.fee)
    if change > DUST_THRESHOLD:
        return ChangeResult(change=change, fee=selection.fee)
    if change > 0:
        logger.warning(f"Folding {change} sat of dust change into the fee")
    return ChangeResult(change=0, fee=selection.fee + change)


__all__ = [
    'CoinSelection',
    'ChangeResult',
    'select_utxos',
    'select_utxos_script_aware',
    'apply_change_policy',
]
