"""
Covenant PSBT - Fee Estimation

Two fee models are used by the transaction builders:

* The heuristic model charges fixed sizes per input and output regardless
  of script type. Taproot staking, locking and bridge builders use it.
* The script-aware model sizes each input by the pattern of the script it
  spends and each output by its type, adding a relay buffer at very low fee
  rates. The P2WSH covenant builders and fixed-address deposits use it.

All fees are integer satoshis; fee rates are integer satoshis per vbyte.
"""

import logging
from typing import Iterable, Optional, Sequence, Tuple

from .constants import (
    DUST_THRESHOLD,
    INPUT_SIZE_FOR_FEE_CAL,
    OUTPUT_SIZE_FOR_FEE_CAL,
    TX_BUFFER_SIZE_FOR_FEE_CAL,
    ESTIMATED_OP_RETURN_SIZE,
    P2WPKH_INPUT_SIZE,
    P2TR_INPUT_SIZE,
    DEFAULT_INPUT_SIZE,
    MAX_NON_LEGACY_OUTPUT_SIZE,
    TX_BUFFER_SIZE_OVERHEAD,
    WITHDRAW_TX_BUFFER_SIZE,
    OP_RETURN_OUTPUT_VALUE_SIZE,
    OP_RETURN_VALUE_SERIALIZE_SIZE,
    WALLET_RELAY_FEE_RATE_THRESHOLD,
    LOW_RATE_ESTIMATION_ACCURACY_BUFFER,
)
from .exceptions import FeeEstimationError, InsufficientFundsError, InvalidScriptError
from .types import UTXO
from .utils import is_op_return, is_p2tr_script, is_p2wpkh_script


logger = logging.getLogger(__name__)


def estimate_fee(fee_rate: int, num_inputs: int, num_outputs: int, has_op_return: bool = False) -> int:
    """
    Estimate a fee with the heuristic model.

    ``(inputs * 180 + outputs * 34 + 10 + inputs [+ 40]) * fee_rate``; the
    sizes overestimate real transactions so the fee is always sufficient.

    Args:
        fee_rate: Fee rate in satoshis per vbyte
        num_inputs: Number of inputs
        num_outputs: Number of outputs
        has_op_return: Add the estimated size of an OP_RETURN output

    Returns:
        Estimated fee in satoshis
    """
    size = (
        num_inputs * INPUT_SIZE_FOR_FEE_CAL
        + num_outputs * OUTPUT_SIZE_FOR_FEE_CAL
        + TX_BUFFER_SIZE_FOR_FEE_CAL
        + num_inputs
    )
    if has_op_return:
        size += ESTIMATED_OP_RETURN_SIZE
    return size * fee_rate


def input_value_sum(utxos: Iterable[UTXO]) -> int:
    return sum(utxo.value for utxo in utxos)


def get_input_size_by_script(script: bytes) -> int:
    """
    Estimated vsize of an input spending ``script``.

    P2WPKH and P2TR key-path inputs have known sizes; anything else is
    charged the conservative legacy size.
    """
    if is_p2wpkh_script(script):
        return P2WPKH_INPUT_SIZE
    if is_p2tr_script(script):
        return P2TR_INPUT_SIZE
    return DEFAULT_INPUT_SIZE


def get_output_size(script: bytes) -> int:
    """Estimated vsize of an output paying to ``script``."""
    if is_op_return(script):
        return len(script) + OP_RETURN_OUTPUT_VALUE_SIZE + OP_RETURN_VALUE_SERIALIZE_SIZE
    return MAX_NON_LEGACY_OUTPUT_SIZE


def get_estimated_change_output_size() -> int:
    return MAX_NON_LEGACY_OUTPUT_SIZE


def get_estimated_size(inputs: Sequence[UTXO], output_scripts: Sequence[bytes]) -> int:
    """
    Estimate the vsize of a transaction under the script-aware model.

    Args:
        inputs: UTXOs being spent
        output_scripts: Scripts of the outputs, excluding change

    Returns:
        Estimated size in vbytes

    Raises:
        InvalidScriptError: If an input has an empty locking script
    """
    input_size = 0
    for utxo in inputs:
        script = utxo.script_bytes
        if not script:
            raise InvalidScriptError("Failed to decompile script when estimating fees for inputs")
        input_size += get_input_size_by_script(script)

    output_size = sum(get_output_size(script) for script in output_scripts)
    return input_size + output_size + TX_BUFFER_SIZE_OVERHEAD


def rate_based_tx_buffer_fee(fee_rate: int) -> int:
    """
    Extra satoshis added at low fee rates.

    Wallets relaying at or below 2 sat/vbyte may reject a linear estimate
    that lands just under their relay minimum.
    """
    if fee_rate <= WALLET_RELAY_FEE_RATE_THRESHOLD:
        return LOW_RATE_ESTIMATION_ACCURACY_BUFFER
    return 0


def estimate_script_aware_fee(
    inputs: Sequence[UTXO],
    output_scripts: Sequence[bytes],
    fee_rate: int,
    spend_amount: int
) -> int:
    """
    Fee for spending ``inputs`` to ``output_scripts`` plus ``spend_amount``.

    A change output is charged for when the inputs leave more than dust
    after the amount and the base fee.
    """
    fee = get_estimated_size(inputs, output_scripts) * fee_rate + rate_based_tx_buffer_fee(fee_rate)
    if input_value_sum(inputs) - (spend_amount + fee) > DUST_THRESHOLD:
        fee += get_estimated_change_output_size() * fee_rate
    return fee


def calculate_spend_amount_and_fee(
    utxos: Sequence[UTXO],
    fee_rate: int,
    output_scripts: Sequence[bytes]
) -> Tuple[int, int]:
    """
    Compute the amount a transaction sweeping every UTXO can send.

    Args:
        utxos: All available UTXOs
        fee_rate: Fee rate in satoshis per vbyte
        output_scripts: Scripts of the outputs

    Returns:
        Tuple of (spend_amount, fee)

    Raises:
        FeeEstimationError: If no UTXOs are given
        InsufficientFundsError: If nothing is left once the fee is paid
    """
    if not utxos:
        raise FeeEstimationError("No available UTXOs")

    accumulated = input_value_sum(utxos)
    fee = get_estimated_size(utxos, output_scripts) * fee_rate
    if accumulated - fee > DUST_THRESHOLD:
        fee += get_estimated_change_output_size() * fee_rate

    spend_amount = accumulated - fee
    if spend_amount <= 0:
        raise InsufficientFundsError(fee, accumulated, "Insufficient funds after calculating fees")

    logger.debug(f"Sweep of {len(utxos)} UTXOs: amount {spend_amount}, fee {fee}")
    return spend_amount, fee


def get_withdraw_tx_fee(fee_rate: int, spent_script: bytes, data_embed_script: Optional[bytes] = None) -> int:
    """
    Fee for a single-input withdrawal transaction.

    Withdrawal witnesses are larger than a plain spend, so a fixed
    withdrawal buffer is added to the size.

    Args:
        fee_rate: Fee rate in satoshis per vbyte
        spent_script: scriptPubKey of the output being withdrawn
        data_embed_script: Optional OP_RETURN output script

    Returns:
        Estimated fee in satoshis
    """
    input_size = get_input_size_by_script(spent_script)
    output_size = get_estimated_change_output_size()
    if data_embed_script is not None and is_op_return(data_embed_script):
        output_size += get_output_size(data_embed_script)
    size = input_size + output_size + TX_BUFFER_SIZE_OVERHEAD + WITHDRAW_TX_BUFFER_SIZE
    return fee_rate * size + rate_based_tx_buffer_fee(fee_rate)


__all__ = [
    'estimate_fee',
    'input_value_sum',
    'get_input_size_by_script',
    'get_output_size',
    'get_estimated_change_output_size',
    'get_estimated_size',
    'rate_based_tx_buffer_fee',
    'estimate_script_aware_fee',
    'calculate_spend_amount_and_fee',
    'get_withdraw_tx_fee',
]
