"""
Tests for the slashable staking and locking transaction builders
"""

import dataclasses

import pytest

from covenant_crypto import NUMS_INTERNAL_KEY_XONLY
from covenant_psbt.address import address_to_output_script
from covenant_psbt.builder import PSBTBuilder
from covenant_psbt.constants import DUST_THRESHOLD, RBF_SEQUENCE
from covenant_psbt.exceptions import (
    InsufficientFundsError,
    PSBTConstructionError,
    PSBTValidationError,
    UneconomicOutputError,
)
from covenant_psbt.fees import estimate_fee
from covenant_psbt.transactions import (
    continue_timelock_locking_transaction,
    continue_unbonding_locking_transaction,
    lock_tree,
    locking_transaction,
    slash_change_tree,
    slash_early_unbonded_transaction,
    slash_timelock_unbonded_transaction,
    unbonding_transaction,
    unbonding_tree,
    withdraw_early_unbonded_transaction,
    withdraw_timelock_unbonded_transaction,
)
from covenant_psbt.transactions.common import finish
from covenant_psbt.types import LockedOutput, UnbondingOutput
from tests.helpers import make_p2wpkh_utxo, make_x_only_key


NETWORK = 'testnet'


def locked_output(scripts, value=100_000):
    return LockedOutput(txid='cd' * 32, vout=0, value=value, script_pubkey=lock_tree(scripts).output_script())


def unbonding_output(scripts, value=100_000):
    return UnbondingOutput(txid='ef' * 32, vout=0, value=value, script_pubkey=unbonding_tree(scripts).output_script())


class TestLockingTransaction:
    """Test funding of a new lock output."""

    def test_outputs_and_fee(self, staking_scripts, change_address, utxos):
        result = locking_transaction(staking_scripts, 10_000, change_address, utxos, NETWORK, 1)
        psbt = result.psbt

        # Heuristic fee for one input and three outputs
        assert result.fee == 293
        assert psbt.fee() == 293
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (lock_tree(staking_scripts).output_script(), 10_000),
            (staking_scripts.data_embed, 0),
            (address_to_output_script(change_address, NETWORK), 39_707),
        ]
        assert [i.sequence for i in psbt.inputs] == [RBF_SEQUENCE]
        assert psbt.inputs[0].prev_txid == utxos[1].txid
        assert psbt.locktime == 0

    def test_does_not_reorder_wallet_utxos(self, staking_scripts, change_address, utxos):
        original = list(utxos)
        locking_transaction(staking_scripts, 60_000, change_address, utxos, NETWORK, 1)
        assert utxos == original

    def test_dust_change_folded_into_fee(self, staking_scripts, change_address):
        result = locking_transaction(
            staking_scripts, 10_000, change_address, [make_p2wpkh_utxo(1, 10_500)], NETWORK, 1
        )
        assert result.fee == 500
        assert len(result.psbt.outputs) == 2

    def test_taproot_wallet_and_lock_height(self, staking_scripts, change_address, utxos, owner_key):
        result = locking_transaction(
            staking_scripts, 10_000, change_address, utxos, NETWORK, 1,
            public_key_no_coord=owner_key, lock_height=850_000
        )
        assert result.psbt.psbt_inputs[0].tap_internal_key == owner_key
        assert result.psbt.locktime == 850_000

    @pytest.mark.parametrize("amount, fee_rate", [(0, 1), (10_000, 0), (-5, 1), (10_000, True)])
    def test_invalid_amount_or_rate(self, staking_scripts, change_address, utxos, amount, fee_rate):
        with pytest.raises(PSBTValidationError, match="Amount and fee rate"):
            locking_transaction(staking_scripts, amount, change_address, utxos, NETWORK, fee_rate)

    def test_invalid_parameters(self, staking_scripts, change_address, utxos):
        with pytest.raises(PSBTValidationError, match="Invalid change address"):
            locking_transaction(staking_scripts, 10_000, 'bogus', utxos, NETWORK, 1)
        with pytest.raises(PSBTValidationError, match="Invalid public key"):
            locking_transaction(staking_scripts, 10_000, change_address, utxos, NETWORK, 1,
                                public_key_no_coord=b'\x02' * 33)
        with pytest.raises(PSBTValidationError, match="Invalid lock height"):
            locking_transaction(staking_scripts, 10_000, change_address, utxos, NETWORK, 1,
                                lock_height=500_000_000)

    def test_insufficient_funds(self, staking_scripts, change_address, utxos):
        with pytest.raises(InsufficientFundsError):
            locking_transaction(staking_scripts, 80_000, change_address, utxos, NETWORK, 1)

    def test_insufficient_funds_for_large_lock(self, staking_scripts, change_address):
        with pytest.raises(InsufficientFundsError):
            locking_transaction(
                staking_scripts, 5_000_000, change_address, [make_p2wpkh_utxo(1, 1_000_000)], NETWORK, 1
            )

    @pytest.mark.parametrize("amount", [1, 100, DUST_THRESHOLD - 1])
    def test_dust_lock_amount(self, staking_scripts, change_address, utxos, amount):
        with pytest.raises(UneconomicOutputError, match="smaller than dust"):
            locking_transaction(staking_scripts, amount, change_address, utxos, NETWORK, 1)

    def test_lock_amount_at_dust_threshold(self, staking_scripts, change_address, utxos):
        result = locking_transaction(staking_scripts, DUST_THRESHOLD, change_address, utxos, NETWORK, 1)
        assert result.psbt.outputs[0].value == DUST_THRESHOLD

    def test_deterministic(self, staking_scripts, change_address, utxos):
        first = locking_transaction(staking_scripts, 10_000, change_address, utxos, NETWORK, 1)
        second = locking_transaction(staking_scripts, 10_000, change_address, list(utxos), NETWORK, 1)
        assert first.psbt.serialize() == second.psbt.serialize()
        assert first.fee == second.fee


class TestWithdrawal:
    """Test timelock and early withdrawals."""

    def test_timelock_withdrawal(self, staking_scripts, withdrawal_address):
        context = locked_output(staking_scripts, value=10_000)
        result = withdraw_timelock_unbonded_transaction(
            staking_scripts, context, withdrawal_address, NETWORK, 1
        )
        psbt = result.psbt

        assert result.fee == 225
        assert psbt.outputs[0].value == 9_775
        assert psbt.version == 2
        assert psbt.inputs[0].sequence == 150

        leaf = psbt.psbt_inputs[0].tap_leaf_scripts[0]
        assert leaf.script == staking_scripts.timelock
        assert leaf.control_block == lock_tree(staking_scripts).control_block(staking_scripts.timelock)
        assert psbt.psbt_inputs[0].tap_internal_key == NUMS_INTERNAL_KEY_XONLY

    def test_early_withdrawal(self, staking_scripts, withdrawal_address):
        context = unbonding_output(staking_scripts, value=10_000)
        result = withdraw_early_unbonded_transaction(
            staking_scripts, context, withdrawal_address, NETWORK, 1
        )
        assert result.psbt.inputs[0].sequence == 5
        assert result.psbt.psbt_inputs[0].tap_leaf_scripts[0].script == staking_scripts.unbonding_timelock

    def test_uneconomic_outputs(self, staking_scripts, withdrawal_address):
        with pytest.raises(UneconomicOutputError, match="smaller than dust"):
            withdraw_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts, 700), withdrawal_address, NETWORK, 1
            )
        with pytest.raises(UneconomicOutputError, match="smaller than minimum fee"):
            withdraw_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts, 200), withdrawal_address, NETWORK, 1
            )

    def test_invalid_fee_rate(self, staking_scripts, withdrawal_address):
        with pytest.raises(PSBTValidationError, match="Withdrawal feeRate must be bigger than 0"):
            withdraw_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts), withdrawal_address, NETWORK, 0
            )

    def test_wrong_stage(self, staking_scripts, withdrawal_address):
        with pytest.raises(PSBTValidationError, match="spends a LockedOutput"):
            withdraw_timelock_unbonded_transaction(
                staking_scripts, unbonding_output(staking_scripts), withdrawal_address, NETWORK, 1
            )
        with pytest.raises(PSBTValidationError, match="spends a UnbondingOutput"):
            withdraw_early_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts), withdrawal_address, NETWORK, 1
            )

    def test_output_of_other_position(self, staking_scripts, withdrawal_address):
        context = LockedOutput(txid='cd' * 32, vout=0, value=10_000, script_pubkey=b'\x00\x14' + b'\x11' * 20)
        with pytest.raises(PSBTValidationError, match="does not match"):
            withdraw_timelock_unbonded_transaction(staking_scripts, context, withdrawal_address, NETWORK, 1)


class TestSlashing:
    """Test slashing from both stages."""

    def test_slash_lock_output(self, staking_scripts, slashing_address):
        result = slash_timelock_unbonded_transaction(
            staking_scripts, locked_output(staking_scripts), slashing_address, 0.25, 1_000, NETWORK
        )
        psbt = result.psbt

        assert result.fee == 1_000
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (address_to_output_script(slashing_address, NETWORK), 25_000),
            (slash_change_tree(staking_scripts).output_script(), 74_000),
        ]
        assert psbt.psbt_inputs[0].tap_leaf_scripts[0].script == staking_scripts.slashing

    def test_slash_unbonding_output(self, staking_scripts, slashing_address):
        result = slash_early_unbonded_transaction(
            staking_scripts, unbonding_output(staking_scripts), slashing_address, 0.1, 500, NETWORK
        )
        leaf = result.psbt.psbt_inputs[0].tap_leaf_scripts[0]
        assert leaf.control_block == unbonding_tree(staking_scripts).control_block(staking_scripts.slashing)
        assert result.psbt.outputs[0].value == 10_000

    def test_slashed_value_is_floored(self, staking_scripts, slashing_address):
        result = slash_timelock_unbonded_transaction(
            staking_scripts, locked_output(staking_scripts, 99_999), slashing_address, 0.1, 1_000, NETWORK
        )
        assert result.psbt.outputs[0].value == 9_999

    @pytest.mark.parametrize("rate, fee, message", [
        (0, 1_000, "bigger than 0"),
        (0.5, 0, "bigger than 0"),
        (1, 1_000, "less than 1"),
    ])
    def test_invalid_parameters(self, staking_scripts, slashing_address, rate, fee, message):
        with pytest.raises(PSBTValidationError, match=message):
            slash_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts), slashing_address, rate, fee, NETWORK
            )

    def test_not_enough_funds(self, staking_scripts, slashing_address):
        with pytest.raises(UneconomicOutputError, match="Not enough funds to slash"):
            slash_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts, 1_000), slashing_address, 0.5, 600, NETWORK
            )

    def test_zero_slash_rejected(self, staking_scripts, slashing_address):
        with pytest.raises(UneconomicOutputError, match="Slashing output value"):
            slash_timelock_unbonded_transaction(
                staking_scripts, locked_output(staking_scripts, 50), slashing_address, 0.01, 10, NETWORK
            )


class TestUnbonding:
    """Test the cooperative unbonding transaction."""

    def test_unbonding(self, staking_scripts):
        result = unbonding_transaction(staking_scripts, locked_output(staking_scripts), 1_000)
        psbt = result.psbt

        assert result.fee == 1_000
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (unbonding_tree(staking_scripts).output_script(), 99_000),
        ]
        assert psbt.psbt_inputs[0].tap_leaf_scripts[0].script == staking_scripts.unbonding

    def test_invalid_fee(self, staking_scripts):
        with pytest.raises(PSBTValidationError, match="Unbonding fee"):
            unbonding_transaction(staking_scripts, locked_output(staking_scripts), 0)
        with pytest.raises(UneconomicOutputError, match="dust"):
            unbonding_transaction(staking_scripts, locked_output(staking_scripts, 1_200), 1_000)


class TestContinueLocking:
    """Test re-locking a position."""

    def test_continue_timelock(self, staking_scripts):
        result = continue_timelock_locking_transaction(
            staking_scripts, locked_output(staking_scripts), NETWORK, 2
        )
        psbt = result.psbt

        assert result.fee == 450
        assert psbt.inputs[0].sequence == 150
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (lock_tree(staking_scripts).output_script(), 99_550),
            (staking_scripts.data_embed, 0),
        ]

    def test_continue_timelock_with_new_timelock(self, staking_data, staking_scripts):
        relock = staking_data.build_timelock_script(300)
        result = continue_timelock_locking_transaction(
            staking_scripts, locked_output(staking_scripts), NETWORK, 1, relock_timelock_script=relock
        )
        relocked = dataclasses.replace(staking_data, timelock=300)
        assert result.psbt.outputs[0].script == lock_tree(staking_scripts, relock).output_script()
        assert result.psbt.outputs[1].script == relocked.build_data_embed_script()
        # The spent output still uses the old timelock
        assert result.psbt.inputs[0].sequence == 150

    def test_relock_locking_profile_data_embed(self, locking_data):
        scripts = locking_data.build_scripts()
        relock = locking_data.build_timelock_script(200)
        result = continue_timelock_locking_transaction(
            scripts, locked_output(scripts), NETWORK, 1, relock_timelock_script=relock
        )
        relocked = dataclasses.replace(locking_data, timelock=200)
        assert result.psbt.outputs[1].script == relocked.build_data_embed_script()

    def test_relock_script_malformed(self, staking_scripts):
        with pytest.raises(PSBTValidationError, match="Relock timelock script is not valid"):
            continue_timelock_locking_transaction(
                staking_scripts, locked_output(staking_scripts), NETWORK, 1, relock_timelock_script=b'\x51'
            )

    def test_relock_script_of_other_owner(self, staking_data, staking_scripts):
        other_owner = dataclasses.replace(staking_data, owner_key=make_x_only_key(2))
        with pytest.raises(PSBTValidationError, match="not a timelock leaf of the position owner"):
            continue_timelock_locking_transaction(
                staking_scripts, locked_output(staking_scripts), NETWORK, 1,
                relock_timelock_script=other_owner.build_timelock_script(300)
            )

    def test_continue_timelock_with_top_up(self, staking_scripts, change_address, utxos):
        result = continue_timelock_locking_transaction(
            staking_scripts, locked_output(staking_scripts), NETWORK, 1,
            additional_amount=20_000, change_address=change_address, utxos=utxos
        )
        psbt = result.psbt

        assert result.fee == 225 + 293
        assert len(psbt.inputs) == 2
        assert psbt.inputs[1].sequence == RBF_SEQUENCE
        assert [o.value for o in psbt.outputs] == [119_775, 0, 29_707]

    def test_top_up_requires_change_address(self, staking_scripts, utxos):
        with pytest.raises(PSBTValidationError, match="change address is required"):
            continue_timelock_locking_transaction(
                staking_scripts, locked_output(staking_scripts), NETWORK, 1,
                additional_amount=20_000, utxos=utxos
            )

    def test_negative_additional_amount(self, staking_scripts):
        with pytest.raises(PSBTValidationError, match="Additional amount"):
            continue_timelock_locking_transaction(
                staking_scripts, locked_output(staking_scripts), NETWORK, 1, additional_amount=-1
            )

    def test_continue_unbonding(self, staking_scripts):
        result = continue_unbonding_locking_transaction(
            staking_scripts, locked_output(staking_scripts), 1_000, NETWORK
        )
        psbt = result.psbt

        assert result.fee == 1_000
        assert psbt.outputs[0].value == 99_000
        assert psbt.outputs[0].script == lock_tree(staking_scripts).output_script()
        assert psbt.psbt_inputs[0].tap_leaf_scripts[0].script == staking_scripts.unbonding

    def test_continue_unbonding_with_top_up(self, staking_scripts, change_address, utxos):
        result = continue_unbonding_locking_transaction(
            staking_scripts, locked_output(staking_scripts), 1_000, NETWORK,
            additional_amount=20_000, change_address=change_address, utxos=utxos, fee_rate=1,
            lock_height=850_000
        )
        assert result.fee == 1_000 + 293
        assert [o.value for o in result.psbt.outputs] == [119_000, 0, 29_707]
        assert result.psbt.locktime == 850_000

    def test_continue_unbonding_top_up_needs_fee_rate(self, staking_scripts, change_address, utxos):
        with pytest.raises(PSBTValidationError, match="Fee rate must be bigger than 0"):
            continue_unbonding_locking_transaction(
                staking_scripts, locked_output(staking_scripts), 1_000, NETWORK,
                additional_amount=20_000, change_address=change_address, utxos=utxos
            )


class TestLockingProfile:
    """Test the delegated locking profile end to end."""

    def test_lock_and_slash(self, locking_data, change_address, slashing_address, utxos):
        scripts = locking_data.build_scripts()
        lock = locking_transaction(scripts, 30_000, change_address, utxos, NETWORK, 1)
        context = LockedOutput.from_psbt(lock.psbt, 0)

        result = slash_timelock_unbonded_transaction(
            scripts, context, slashing_address, 0.5, 1_000, NETWORK
        )
        assert result.psbt.inputs[0].prev_txid == lock.psbt.get_transaction_id()
        assert [o.value for o in result.psbt.outputs] == [15_000, 14_000]

    def test_scripts_of_other_owner_rejected(self, staking_data, staking_scripts, withdrawal_address):
        other = type(staking_data)(
            owner_key=make_x_only_key(2),
            covenant_keys=staking_data.covenant_keys,
            covenant_threshold=2,
            timelock=150,
            unbonding_timelock=5,
            magic_bytes=staking_data.magic_bytes,
        ).build_scripts()
        with pytest.raises(PSBTValidationError, match="does not match"):
            withdraw_timelock_unbonded_transaction(
                other, locked_output(staking_scripts), withdrawal_address, NETWORK, 1
            )


class TestFeeReconciliation:
    """Test the declared fee check every builder ends with."""

    def test_declared_fee_mismatch_is_detected(self):
        psbt = PSBTBuilder()
        psbt.add_input('ab' * 32, 0, 1_000, b'\x00\x14' + b'\x11' * 20)
        psbt.add_output(b'\x00\x14' + b'\x11' * 20, 900)
        with pytest.raises(PSBTConstructionError, match="does not match actual fee"):
            finish(psbt, 50, "test")


class TestLockAndWithdraw:
    """Test a full position from lock to timelock withdrawal."""

    def test_lock_then_withdraw(self, staking_scripts, change_address, withdrawal_address):
        lock = locking_transaction(
            staking_scripts, 50_000_000, change_address, [make_p2wpkh_utxo(1, 100_000_000)], NETWORK, 10
        )
        assert lock.psbt.fee() == lock.fee
        assert lock.psbt.outputs[0].value == 50_000_000

        context = LockedOutput.from_psbt(lock.psbt, 0)
        result = withdraw_timelock_unbonded_transaction(
            staking_scripts, context, withdrawal_address, NETWORK, 10
        )

        assert result.psbt.inputs[0].prev_txid == lock.psbt.get_transaction_id()
        assert result.psbt.outputs[0].value == 50_000_000 - estimate_fee(10, 1, 1)
        assert result.fee == estimate_fee(10, 1, 1) == 2_250
