"""
Tests for the PSBT container, serialization helpers and spend contexts
"""

import base64
import hashlib
import struct

import pytest

from covenant_psbt.builder import PSBTBuilder, PSBTKeyType, TapLeafScript
from covenant_psbt.exceptions import PSBTConstructionError, PSBTValidationError
from covenant_psbt.types import LockedOutput, UnbondingOutput, UTXO
from covenant_psbt.utils import (
    create_p2wsh_script,
    double_sha256,
    is_p2tr_script,
    is_p2wpkh_script,
    is_p2wsh_script,
    parse_raw_transaction,
    serialize_compact_size,
    serialize_witness_stack,
    serialize_witness_utxo,
    varstr,
)


P2WPKH_SCRIPT = b'\x00\x14' + b'\x11' * 20
P2TR_SCRIPT = b'\x51\x20' + b'\x22' * 32


class TestSerializationHelpers:
    """Test compact size and varstr helpers."""

    @pytest.mark.parametrize("value, encoded", [
        (0, b'\x00'),
        (252, b'\xfc'),
        (253, b'\xfd\xfd\x00'),
        (0x10000, b'\xfe\x00\x00\x01\x00'),
    ])
    def test_compact_size(self, value, encoded):
        assert serialize_compact_size(value) == encoded

    def test_varstr(self):
        assert varstr(b'abc') == b'\x03abc'
        assert varstr(b'') == b'\x00'

    def test_varstr_single_zero_byte(self):
        # Key type 0x00 must stay length-prefixed
        assert varstr(b'\x00') == b'\x01\x00'

    def test_double_sha256(self):
        assert double_sha256(b'abc') == hashlib.sha256(hashlib.sha256(b'abc').digest()).digest()

    def test_witness_utxo(self):
        assert serialize_witness_utxo(1000, P2WPKH_SCRIPT) == struct.pack('<q', 1000) + b'\x16' + P2WPKH_SCRIPT

    def test_witness_stack(self):
        assert serialize_witness_stack([b'', b'\x01\x02']) == b'\x02\x00\x02\x01\x02'

    def test_script_patterns(self):
        p2wsh = create_p2wsh_script(b'\x51')
        assert is_p2wpkh_script(P2WPKH_SCRIPT)
        assert is_p2tr_script(P2TR_SCRIPT)
        assert is_p2wsh_script(p2wsh)
        assert not is_p2wpkh_script(p2wsh)
        assert not is_p2tr_script(P2WPKH_SCRIPT)


class TestPSBTBuilder:
    """Test PSBT assembly and serialization."""

    def setup_method(self):
        self.builder = PSBTBuilder()
        self.txid = 'ab' * 32

    def test_defaults(self):
        assert self.builder.version == 2
        assert self.builder.locktime == 0

    def test_fee_reconciliation(self):
        self.builder.add_input(self.txid, 0, 10_000, P2WPKH_SCRIPT)
        self.builder.add_output(P2TR_SCRIPT, 9_000)
        assert self.builder.fee() == 1_000
        assert self.builder.get_fee_info() == {'total_input': 10_000, 'total_output': 9_000, 'fee': 1_000}

    def test_serialization_fields(self):
        leaf = TapLeafScript(control_block=b'\xc0' + b'\x01' * 32, script=b'\x51')
        self.builder.add_input(
            self.txid, 1, 10_000, P2TR_SCRIPT,
            tap_leaf_script=leaf, tap_internal_key=b'\x02' * 32
        )
        self.builder.add_output(P2WPKH_SCRIPT, 9_000, witness_script=b'\x51')

        data = self.builder.serialize()
        # Magic, then the unsigned transaction under global key type 0x00
        unsigned = self.builder._create_unsigned_transaction()
        assert data.startswith(b'psbt\xff' + b'\x01\x00' + varstr(unsigned))
        assert base64.b64decode(self.builder.to_base64()) == data
        assert bytes.fromhex(self.builder.to_hex()) == data

        # Tapleaf script key: type || control block, value: script || leaf version
        tap_leaf_key = varstr(bytes([PSBTKeyType.PSBT_IN_TAP_LEAF_SCRIPT.value]) + leaf.control_block)
        assert tap_leaf_key + varstr(b'\x51\xc0') in data
        assert varstr(bytes([PSBTKeyType.PSBT_IN_TAP_INTERNAL_KEY.value])) + varstr(b'\x02' * 32) in data
        assert varstr(bytes([PSBTKeyType.PSBT_IN_WITNESS_UTXO.value])) + varstr(
            serialize_witness_utxo(10_000, P2TR_SCRIPT)) in data

    def test_transaction_id_matches_unsigned_tx(self):
        self.builder.add_input(self.txid, 0, 10_000, P2WPKH_SCRIPT, sequence=0xfffffffd)
        self.builder.add_output(P2TR_SCRIPT, 9_000)
        unsigned = self.builder._create_unsigned_transaction()
        assert self.builder.get_transaction_id() == double_sha256(unsigned)[::-1].hex()
        # Sequence is serialized little endian after the empty scriptSig
        assert b'\x00' + struct.pack('<I', 0xfffffffd) in unsigned

    def test_locktime(self):
        self.builder.set_locktime(850_000)
        assert self.builder.locktime == 850_000
        with pytest.raises(PSBTValidationError, match="Invalid lock height"):
            self.builder.set_locktime(500_000_000)

    def test_input_validation(self):
        with pytest.raises(PSBTConstructionError, match="Invalid txid"):
            self.builder.add_input('ab' * 31, 0, 1, P2WPKH_SCRIPT)
        with pytest.raises(PSBTConstructionError, match="Invalid sequence"):
            self.builder.add_input(self.txid, 0, 1, P2WPKH_SCRIPT, sequence=1 << 32)
        with pytest.raises(PSBTConstructionError, match="32 bytes"):
            self.builder.add_input(self.txid, 0, 1, P2WPKH_SCRIPT, tap_internal_key=b'\x02' * 33)

    def test_output_validation(self):
        with pytest.raises(PSBTConstructionError, match="cannot be empty"):
            self.builder.add_output(b'', 1)
        with pytest.raises(PSBTConstructionError, match="cannot be negative"):
            self.builder.add_output(P2TR_SCRIPT, -1)

    def test_validate_structure(self):
        assert "PSBT must have at least one input" in self.builder.validate_structure()
        self.builder.add_input(self.txid, 0, 1_000, P2WPKH_SCRIPT)
        self.builder.add_output(P2TR_SCRIPT, 2_000)
        assert "Outputs exceed inputs" in self.builder.validate_structure()


def _raw_segwit_transaction(outputs):
    """Serialize a one-input segwit transaction paying ``outputs``."""
    body = b'\x01' + b'\x11' * 32 + struct.pack('<I', 0) + b'\x00' + b'\xff' * 4
    body += bytes([len(outputs)])
    for value, script in outputs:
        body += struct.pack('<q', value) + bytes([len(script)]) + script
    witness = b'\x00'
    locktime = struct.pack('<I', 0)
    version = struct.pack('<I', 2)
    raw = version + b'\x00\x01' + body + witness + locktime
    stripped = version + body + locktime
    txid = hashlib.sha256(hashlib.sha256(stripped).digest()).digest()[::-1].hex()
    return raw, txid


class TestRawTransactions:
    """Test raw transaction parsing and spend context binding."""

    def test_parse_segwit_transaction(self):
        raw, txid = _raw_segwit_transaction([(50_000, P2TR_SCRIPT), (0, b'\x6a\x01\x01')])
        tx = parse_raw_transaction(raw)
        assert tx.txid == txid
        assert [(o.value, o.lock_script) for o in tx.outputs] == [(50_000, P2TR_SCRIPT), (0, b'\x6a\x01\x01')]

    def test_parse_legacy_serialization(self):
        builder = PSBTBuilder()
        builder.add_input('ab' * 32, 0, 10_000, P2WPKH_SCRIPT)
        builder.add_output(P2TR_SCRIPT, 9_000)
        tx = parse_raw_transaction(builder._create_unsigned_transaction())
        assert tx.txid == builder.get_transaction_id()
        assert tx.outputs[0].value == 9_000

    def test_parse_truncated_transaction(self):
        with pytest.raises(ValueError, match="Failed to parse transaction"):
            parse_raw_transaction(bytes.fromhex('0200000001'))

    def test_locked_output_from_raw_transaction(self):
        raw, txid = _raw_segwit_transaction([(1_000, P2WPKH_SCRIPT), (50_000, P2TR_SCRIPT)])
        context = LockedOutput.from_raw_transaction(raw.hex(), vout=1)
        assert context == LockedOutput(txid=txid, vout=1, value=50_000, script_pubkey=P2TR_SCRIPT)

    def test_out_of_bounds_output(self):
        raw, _ = _raw_segwit_transaction([(50_000, P2TR_SCRIPT)])
        with pytest.raises(PSBTValidationError, match="out of bounds"):
            UnbondingOutput.from_raw_transaction(raw.hex(), vout=1)

    def test_invalid_raw_transaction(self):
        with pytest.raises(PSBTValidationError, match="Invalid raw transaction"):
            LockedOutput.from_raw_transaction('0200000001')

    def test_context_from_psbt(self):
        builder = PSBTBuilder()
        builder.add_input('ab' * 32, 0, 10_000, P2WPKH_SCRIPT)
        builder.add_output(P2TR_SCRIPT, 9_000)
        context = UnbondingOutput.from_psbt(builder, 0)
        assert context.txid == builder.get_transaction_id()
        assert context.value == 9_000
        assert isinstance(context, UnbondingOutput)

    def test_context_validation(self):
        with pytest.raises(PSBTValidationError, match="bigger than 0"):
            LockedOutput(txid='ab' * 32, vout=0, value=0, script_pubkey=P2TR_SCRIPT)

    def test_utxo_script_bytes(self):
        utxo = UTXO(txid='ab' * 32, vout=0, value=1, script_pubkey=P2WPKH_SCRIPT.hex())
        assert utxo.script_bytes == P2WPKH_SCRIPT
