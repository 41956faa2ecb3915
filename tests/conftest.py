"""
Pytest configuration and fixtures for covenant PSBT tests.
"""

import pytest

from covenant_scripts import BridgeScriptData, ScriptProfile, SlashableScriptData
from covenant_psbt.address import encode_segwit_address
from tests.helpers import EVM_ADDRESS, MAGIC_BYTES, make_p2wpkh_utxo, make_x_only_key


@pytest.fixture
def owner_key():
    return make_x_only_key(1)


@pytest.fixture
def covenant_keys():
    return tuple(make_x_only_key(i) for i in (10, 11, 12))


@pytest.fixture
def operator_keys():
    return (make_x_only_key(20), make_x_only_key(21))


@pytest.fixture
def staking_data(owner_key, covenant_keys):
    """Staking position: 2-of-3 covenant, 150 block lock, 5 block unbonding."""
    return SlashableScriptData(
        owner_key=owner_key,
        covenant_keys=covenant_keys,
        covenant_threshold=2,
        timelock=150,
        unbonding_timelock=5,
        magic_bytes=MAGIC_BYTES,
    )


@pytest.fixture
def locking_data(owner_key, covenant_keys, operator_keys):
    """Delegated locking position with operator keys."""
    return SlashableScriptData(
        owner_key=owner_key,
        covenant_keys=covenant_keys,
        covenant_threshold=2,
        timelock=150,
        unbonding_timelock=5,
        magic_bytes=MAGIC_BYTES,
        operator_keys=operator_keys,
        profile=ScriptProfile.LOCKING,
    )


@pytest.fixture
def staking_scripts(staking_data):
    return staking_data.build_scripts()


@pytest.fixture
def bridge_data(owner_key, covenant_keys):
    return BridgeScriptData(
        user_key=owner_key,
        covenant_keys=covenant_keys,
        covenant_threshold=2,
        transfer_timelock=144,
        magic_bytes=MAGIC_BYTES,
        evm_address=EVM_ADDRESS,
    )


@pytest.fixture
def bridge_scripts(bridge_data):
    return bridge_data.build_scripts()


@pytest.fixture
def change_address():
    return encode_segwit_address(b'\x22' * 20, 0, 'testnet')


@pytest.fixture
def withdrawal_address():
    return encode_segwit_address(b'\x33' * 20, 0, 'testnet')


@pytest.fixture
def slashing_address():
    return encode_segwit_address(b'\x44' * 32, 1, 'testnet')


@pytest.fixture
def utxos():
    """Wallet UTXOs deliberately not sorted by value."""
    return [
        make_p2wpkh_utxo(1, 20_000),
        make_p2wpkh_utxo(2, 50_000),
        make_p2wpkh_utxo(3, 5_000),
    ]
