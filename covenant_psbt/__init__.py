"""
Covenant PSBT - Transaction Construction for Covenant Staking and Bridging

This package builds unsigned Partially Signed Bitcoin Transactions (PSBTs)
for every stage of a covenant-protected position: locking funds into a
taproot script tree, unbonding, withdrawing, slashing, re-locking, and
bridge deposits and their spends. It also provides the fee estimators and
coin selection the builders use, and the witness composer that merges
covenant signatures into a signed witness.
"""

from .builder import PSBTBuilder, PSBTKeyType, TapLeafScript
from .types import UTXO, LockedOutput, UnbondingOutput, SpendContext, PsbtTransactionResult
from .address import address_to_output_script, output_script_to_address
from .fees import (
    estimate_fee,
    estimate_script_aware_fee,
    calculate_spend_amount_and_fee,
    get_withdraw_tx_fee,
)
from .selection import (
    CoinSelection,
    ChangeResult,
    select_utxos,
    select_utxos_script_aware,
    apply_change_policy,
)
from .witness import CovenantSignature, create_witness, witness_stack_to_script_witness
from .config import ConfigurationManager, ConfigurationError, configure_logging
from .transactions import *
from .transactions import __all__ as _transaction_builders
from .exceptions import *

__all__ = [
    'PSBTBuilder',
    'PSBTKeyType',
    'TapLeafScript',
    'UTXO',
    'LockedOutput',
    'UnbondingOutput',
    'SpendContext',
    'PsbtTransactionResult',
    'address_to_output_script',
    'output_script_to_address',
    'estimate_fee',
    'estimate_script_aware_fee',
    'calculate_spend_amount_and_fee',
    'get_withdraw_tx_fee',
    'CoinSelection',
    'ChangeResult',
    'select_utxos',
    'select_utxos_script_aware',
    'apply_change_policy',
    'CovenantSignature',
    'create_witness',
    'witness_stack_to_script_witness',
    'ConfigurationManager',
    'ConfigurationError',
    'configure_logging',
    'PSBTError',
    'PSBTConstructionError',
    'PSBTValidationError',
    'InvalidAddressError',
    'InvalidScriptError',
    'InsufficientFundsError',
    'FeeEstimationError',
    'UneconomicOutputError',
] + _transaction_builders

__version__ = '1.0.0'
