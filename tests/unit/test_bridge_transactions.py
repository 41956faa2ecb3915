"""
Tests for the bridge transaction builders
"""

import hashlib

import pytest

from covenant_crypto import NUMS_INTERNAL_KEY_XONLY
from covenant_psbt.address import address_to_output_script, encode_segwit_address
from covenant_psbt.constants import DUST_THRESHOLD
from covenant_psbt.exceptions import InvalidScriptError, PSBTValidationError, UneconomicOutputError
from covenant_psbt.fees import get_output_size
from covenant_psbt.outputs.p2wsh import create_multisig_script
from covenant_psbt.transactions import (
    bridge_tree,
    deposit_p2wsh_multisig_transaction,
    deposit_to_fixed_address_transaction,
    deposit_transaction,
    recapture_transfer_timelock_transaction,
    send_p2wsh_multisig_transaction,
    send_transaction,
)
from covenant_psbt.types import LockedOutput
from tests.helpers import make_compressed_key


NETWORK = 'testnet'


def deposit_output(scripts, value=50_000):
    return LockedOutput(txid='aa' * 32, vout=0, value=value, script_pubkey=bridge_tree(scripts).output_script())


class TestTaprootDeposit:
    """Test deposits locked to the transfer and timelock leaves."""

    def test_deposit(self, bridge_scripts, change_address, utxos):
        result = deposit_transaction(bridge_scripts, 10_000, change_address, utxos, NETWORK, 1)
        psbt = result.psbt

        # Three outputs, one of them OP_RETURN
        assert result.fee == 333
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (bridge_tree(bridge_scripts).output_script(), 10_000),
            (bridge_scripts.data_embed, 0),
            (address_to_output_script(change_address, NETWORK), 39_667),
        ]

    def test_deposit_with_lock_height(self, bridge_scripts, change_address, utxos):
        result = deposit_transaction(
            bridge_scripts, 10_000, change_address, utxos, NETWORK, 1, lock_height=850_000
        )
        assert result.psbt.locktime == 850_000

    def test_send(self, bridge_scripts, withdrawal_address):
        result = send_transaction(bridge_scripts, deposit_output(bridge_scripts), withdrawal_address, 1_000, NETWORK)
        psbt = result.psbt

        assert result.fee == 1_000
        assert psbt.outputs[0].value == 49_000
        leaf = psbt.psbt_inputs[0].tap_leaf_scripts[0]
        assert leaf.script == bridge_scripts.transfer
        assert leaf.control_block == bridge_tree(bridge_scripts).control_block(bridge_scripts.transfer)
        assert psbt.psbt_inputs[0].tap_internal_key == NUMS_INTERNAL_KEY_XONLY

    @pytest.mark.parametrize("value, minimum_fee, error, message", [
        (50_000, 0, PSBTValidationError, "bigger than 0"),
        (50_000, 50_000, PSBTValidationError, "less than the output value"),
        (1_000, 500, UneconomicOutputError, "dust"),
    ])
    def test_send_fee_checks(self, bridge_scripts, withdrawal_address, value, minimum_fee, error, message):
        with pytest.raises(error, match=message):
            send_transaction(
                bridge_scripts, deposit_output(bridge_scripts, value), withdrawal_address, minimum_fee, NETWORK
            )

    def test_recapture(self, bridge_scripts, withdrawal_address):
        result = recapture_transfer_timelock_transaction(
            bridge_scripts, deposit_output(bridge_scripts, 10_000), withdrawal_address, NETWORK, 1
        )
        psbt = result.psbt

        assert result.fee == 225
        assert psbt.outputs[0].value == 9_775
        assert psbt.inputs[0].sequence == 144
        assert psbt.version == 2
        assert psbt.psbt_inputs[0].tap_leaf_scripts[0].script == bridge_scripts.timelock

    def test_recapture_fee_rate(self, bridge_scripts, withdrawal_address):
        with pytest.raises(PSBTValidationError, match="Recapture feeRate must be bigger than 0"):
            recapture_transfer_timelock_transaction(
                bridge_scripts, deposit_output(bridge_scripts), withdrawal_address, NETWORK, 0
            )

    def test_recapture_dust(self, bridge_scripts, withdrawal_address):
        with pytest.raises(UneconomicOutputError, match="dust"):
            recapture_transfer_timelock_transaction(
                bridge_scripts, deposit_output(bridge_scripts, 700), withdrawal_address, NETWORK, 1
            )


class TestMultisigDeposit:
    """Test m-of-n P2WSH multisig deposits."""

    def setup_method(self):
        self.keys = [make_compressed_key(i) for i in (30, 31, 32)]
        self.witness_script = create_multisig_script(2, self.keys)
        self.p2wsh = b'\x00\x20' + hashlib.sha256(self.witness_script).digest()

    def test_multisig_script(self):
        assert self.witness_script[0] == 0x52
        assert self.witness_script[-2:] == b'\x53\xae'
        assert self.witness_script[2:35] == self.keys[0]

    def test_deposit(self, change_address, utxos):
        result = deposit_p2wsh_multisig_transaction(
            10_000, change_address, utxos, NETWORK, 1, self.keys, 2
        )
        psbt = result.psbt

        assert result.fee == 259
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (self.p2wsh, 10_000),
            (address_to_output_script(change_address, NETWORK), 39_741),
        ]
        assert psbt.psbt_outputs[0].witness_script == self.witness_script
        # Funding inputs are plain wallet inputs
        assert psbt.psbt_inputs[0].redeem_script is None
        assert psbt.psbt_inputs[0].tap_internal_key is None

    def test_deposit_with_data_embed(self, bridge_scripts, change_address, utxos):
        result = deposit_p2wsh_multisig_transaction(
            10_000, change_address, utxos, NETWORK, 1, self.keys, 2, data_embed=bridge_scripts.data_embed
        )
        assert result.fee == 293
        assert result.psbt.outputs[1].script == bridge_scripts.data_embed

    def test_invalid_threshold(self, change_address, utxos):
        with pytest.raises(InvalidScriptError, match="required signatures"):
            deposit_p2wsh_multisig_transaction(10_000, change_address, utxos, NETWORK, 1, self.keys, 4)

    def test_send(self, withdrawal_address):
        context = LockedOutput(txid='bb' * 32, vout=1, value=20_000, script_pubkey=self.p2wsh)
        result = send_p2wsh_multisig_transaction(context, withdrawal_address, 1_000, NETWORK, self.keys, 2)

        assert result.fee == 1_000
        assert result.psbt.outputs[0].value == 19_000
        assert result.psbt.psbt_inputs[0].witness_script == self.witness_script

    def test_send_with_other_keys(self, withdrawal_address):
        context = LockedOutput(txid='bb' * 32, vout=1, value=20_000, script_pubkey=self.p2wsh)
        with pytest.raises(PSBTValidationError, match="does not match"):
            send_p2wsh_multisig_transaction(
                context, withdrawal_address, 1_000, NETWORK, list(reversed(self.keys)), 2
            )


class TestFixedAddressDeposit:
    """Test deposits to a fixed bridge address."""

    def setup_method(self):
        self.fixed_address = encode_segwit_address(b'\x55' * 32, 1, 'testnet')

    def test_deposit(self, bridge_scripts, change_address, utxos):
        result = deposit_to_fixed_address_transaction(
            bridge_scripts.data_embed, 10_000, self.fixed_address, change_address, utxos, NETWORK, 1
        )
        psbt = result.psbt

        # P2WPKH input, P2TR output, data embed, overhead, low rate buffer, change
        expected_fee = 68 + 43 + get_output_size(bridge_scripts.data_embed) + 11 + 30 + 43
        assert result.fee == expected_fee
        assert [(o.script, o.value) for o in psbt.outputs] == [
            (b'\x51\x20' + b'\x55' * 32, 10_000),
            (bridge_scripts.data_embed, 0),
            (address_to_output_script(change_address, NETWORK), 40_000 - expected_fee),
        ]

    def test_requires_data_embed(self, change_address, utxos):
        with pytest.raises(PSBTValidationError, match="data embed script is required"):
            deposit_to_fixed_address_transaction(
                b'', 10_000, self.fixed_address, change_address, utxos, NETWORK, 1
            )

    def test_invalid_fixed_address(self, bridge_scripts, change_address, utxos):
        with pytest.raises(PSBTValidationError, match="Invalid deposit address"):
            deposit_to_fixed_address_transaction(
                bridge_scripts.data_embed, 10_000, 'bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4',
                change_address, utxos, NETWORK, 1
            )


class TestFundingDust:
    """Test that no deposit builder creates a dust output."""

    def setup_method(self):
        self.keys = [make_compressed_key(i) for i in (30, 31, 32)]
        self.fixed_address = encode_segwit_address(b'\x55' * 32, 1, 'testnet')

    @pytest.mark.parametrize("amount", [1, DUST_THRESHOLD - 1])
    def test_deposit(self, bridge_scripts, change_address, utxos, amount):
        with pytest.raises(UneconomicOutputError, match="smaller than dust"):
            deposit_transaction(bridge_scripts, amount, change_address, utxos, NETWORK, 1)

    @pytest.mark.parametrize("amount", [1, DUST_THRESHOLD - 1])
    def test_multisig_deposit(self, change_address, utxos, amount):
        with pytest.raises(UneconomicOutputError, match="smaller than dust"):
            deposit_p2wsh_multisig_transaction(amount, change_address, utxos, NETWORK, 1, self.keys, 2)

    @pytest.mark.parametrize("amount", [1, DUST_THRESHOLD - 1])
    def test_fixed_address_deposit(self, bridge_scripts, change_address, utxos, amount):
        with pytest.raises(UneconomicOutputError, match="smaller than dust"):
            deposit_to_fixed_address_transaction(
                bridge_scripts.data_embed, amount, self.fixed_address, change_address, utxos, NETWORK, 1
            )

    def test_deposit_at_dust_threshold(self, bridge_scripts, change_address, utxos):
        result = deposit_transaction(bridge_scripts, DUST_THRESHOLD, change_address, utxos, NETWORK, 1)
        values = [o.value for o in result.psbt.outputs]
        assert values[0] == DUST_THRESHOLD
        assert all(value == 0 or value >= DUST_THRESHOLD for value in values)

    def test_deterministic(self, bridge_scripts, change_address, utxos):
        first = deposit_transaction(bridge_scripts, 10_000, change_address, utxos, NETWORK, 1)
        second = deposit_transaction(bridge_scripts, 10_000, change_address, utxos, NETWORK, 1)
        assert first.psbt.serialize() == second.psbt.serialize()
        assert first.fee == second.fee
