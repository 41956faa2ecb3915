"""
Covenant PSBT - Transaction Factory

One builder per protocol transition. Every builder returns an unsigned
PSBT together with the exact fee it pays.
"""

from .locking import (
    locking_transaction,
    unbonding_transaction,
    withdraw_timelock_unbonded_transaction,
    withdraw_early_unbonded_transaction,
    slash_timelock_unbonded_transaction,
    slash_early_unbonded_transaction,
    continue_timelock_locking_transaction,
    continue_unbonding_locking_transaction,
)
from .bridge import (
    deposit_transaction,
    send_transaction,
    recapture_transfer_timelock_transaction,
    deposit_p2wsh_multisig_transaction,
    send_p2wsh_multisig_transaction,
    deposit_to_fixed_address_transaction,
)
from .covenant_v1 import (
    covenant_locking_transaction,
    covenant_deposit_transaction,
    covenant_send_transaction,
    withdraw_timelock_transaction,
    withdraw_unbonding_transaction,
    withdraw_pre_deposit_transaction,
)
from .common import lock_tree, unbonding_tree, slash_change_tree, bridge_tree

__all__ = [
    # Slashable staking and locking
    'locking_transaction',
    'unbonding_transaction',
    'withdraw_timelock_unbonded_transaction',
    'withdraw_early_unbonded_transaction',
    'slash_timelock_unbonded_transaction',
    'slash_early_unbonded_transaction',
    'continue_timelock_locking_transaction',
    'continue_unbonding_locking_transaction',
    # Bridge
    'deposit_transaction',
    'send_transaction',
    'recapture_transfer_timelock_transaction',
    'deposit_p2wsh_multisig_transaction',
    'send_p2wsh_multisig_transaction',
    'deposit_to_fixed_address_transaction',
    # Single-script covenant
    'covenant_locking_transaction',
    'covenant_deposit_transaction',
    'covenant_send_transaction',
    'withdraw_timelock_transaction',
    'withdraw_unbonding_transaction',
    'withdraw_pre_deposit_transaction',
    # Tree layouts
    'lock_tree',
    'unbonding_tree',
    'slash_change_tree',
    'bridge_tree',
]
