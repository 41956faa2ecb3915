"""
Covenant PSBT - PSBT Builder

This module provides the container used by every transaction builder to
assemble an unsigned transaction and its BIP-174 metadata. Taproot script
path inputs carry the BIP-371 leaf script and internal key fields so an
external signer can produce the script path signatures.
"""

import base64
import struct
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Dict, List, Optional

from .constants import (
    TRANSACTION_VERSION,
    TAPSCRIPT_LEAF_VERSION,
    FINAL_SEQUENCE,
    LOCKTIME_HEIGHT_TIME_CUTOFF,
)
from .exceptions import PSBTConstructionError, PSBTValidationError
from .utils import serialize_compact_size, double_sha256, serialize_witness_utxo, varstr


@dataclass
class TransactionInput:
    """Simple input structure for PSBT transactions."""
    prev_txid: str
    output_n: int
    sequence: int = FINAL_SEQUENCE


@dataclass
class TransactionOutput:
    """Simple output structure for PSBT transactions."""
    value: int
    script: bytes


class PSBTKeyType(Enum):
    """PSBT key types as defined in BIP-174 and BIP-371."""

    # Global types
    PSBT_GLOBAL_UNSIGNED_TX = 0x00
    PSBT_GLOBAL_VERSION = 0xfb

    # Input types
    PSBT_IN_NON_WITNESS_UTXO = 0x00
    PSBT_IN_WITNESS_UTXO = 0x01
    PSBT_IN_REDEEM_SCRIPT = 0x04
    PSBT_IN_WITNESS_SCRIPT = 0x05
    PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
    PSBT_IN_TAP_LEAF_SCRIPT = 0x15
    PSBT_IN_TAP_INTERNAL_KEY = 0x17

    # Output types
    PSBT_OUT_WITNESS_SCRIPT = 0x01


@dataclass
class PSBTKeyValue:
    """Represents a key-value pair in PSBT format."""
    key_type: int
    key_data: bytes = field(default_factory=bytes)
    value: bytes = field(default_factory=bytes)

    def serialize(self) -> bytes:
        """Serialize key-value pair to PSBT format."""
        key = bytes([self.key_type]) + self.key_data
        return varstr(key) + varstr(self.value)


@dataclass
class TapLeafScript:
    """A BIP-371 tapleaf script entry: the leaf and the control block proving it."""
    control_block: bytes
    script: bytes
    leaf_version: int = TAPSCRIPT_LEAF_VERSION


@dataclass
class PSBTInput:
    """Represents a PSBT input with associated metadata."""
    non_witness_utxo: Optional[bytes] = None
    witness_utxo: Optional[bytes] = None
    redeem_script: Optional[bytes] = None
    witness_script: Optional[bytes] = None
    tap_leaf_scripts: List[TapLeafScript] = field(default_factory=list)
    tap_internal_key: Optional[bytes] = None
    final_scriptwitness: Optional[bytes] = None

    def serialize(self) -> bytes:
        """Serialize input to PSBT format."""
        result = BytesIO()

        if self.non_witness_utxo:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_NON_WITNESS_UTXO.value, b'', self.non_witness_utxo)
            result.write(kv.serialize())

        if self.witness_utxo:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_WITNESS_UTXO.value, b'', self.witness_utxo)
            result.write(kv.serialize())

        if self.redeem_script:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_REDEEM_SCRIPT.value, b'', self.redeem_script)
            result.write(kv.serialize())

        if self.witness_script:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_WITNESS_SCRIPT.value, b'', self.witness_script)
            result.write(kv.serialize())

        if self.final_scriptwitness:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_FINAL_SCRIPTWITNESS.value, b'', self.final_scriptwitness)
            result.write(kv.serialize())

        for leaf in self.tap_leaf_scripts:
            kv = PSBTKeyValue(
                PSBTKeyType.PSBT_IN_TAP_LEAF_SCRIPT.value,
                leaf.control_block,
                leaf.script + bytes([leaf.leaf_version])
            )
            result.write(kv.serialize())

        if self.tap_internal_key:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_INTERNAL_KEY.value, b'', self.tap_internal_key)
            result.write(kv.serialize())

        # End marker
        result.write(b'\x00')
        return result.getvalue()


@dataclass
class PSBTOutput:
    """Represents a PSBT output with associated metadata."""
    witness_script: Optional[bytes] = None

    def serialize(self) -> bytes:
        """Serialize output to PSBT format."""
        result = BytesIO()

        if self.witness_script:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_OUT_WITNESS_SCRIPT.value, b'', self.witness_script)
            result.write(kv.serialize())

        # End marker
        result.write(b'\x00')
        return result.getvalue()


class PSBTBuilder:
    """
    Container for constructing PSBTs according to BIP-174.

    Besides the unsigned transaction and the per-input/per-output key-value
    maps, the builder records the value of every spent output so the fee
    actually paid can be reconciled against the fee a builder declares.
    """

    def __init__(self, version: int = TRANSACTION_VERSION, locktime: int = 0):
        """
        Initialize PSBT builder.

        Args:
            version: Transaction version (default: 2)
            locktime: Transaction locktime (default: 0)
        """
        self.version = version
        self.locktime = locktime
        self.inputs: List[TransactionInput] = []
        self.outputs: List[TransactionOutput] = []
        self.psbt_inputs: List[PSBTInput] = []
        self.psbt_outputs: List[PSBTOutput] = []
        self.input_values: List[int] = []

    def add_input(
        self,
        txid: str,
        vout: int,
        value: int,
        script_pubkey: bytes,
        sequence: int = FINAL_SEQUENCE,
        non_witness_utxo: Optional[bytes] = None,
        redeem_script: Optional[bytes] = None,
        witness_script: Optional[bytes] = None,
        tap_leaf_script: Optional[TapLeafScript] = None,
        tap_internal_key: Optional[bytes] = None
    ) -> int:
        """
        Add an input to the PSBT.

        Args:
            txid: Transaction ID of the UTXO to spend
            vout: Output index of the UTXO to spend
            value: Value of the spent output in satoshis
            script_pubkey: Locking script of the spent output
            sequence: Sequence number
            non_witness_utxo: Full previous transaction for non-segwit inputs
            redeem_script: Redeem script for P2SH inputs
            witness_script: Witness script for P2WSH inputs
            tap_leaf_script: Leaf script and control block for taproot script path spends
            tap_internal_key: 32-byte x-only taproot internal key

        Returns:
            Index of the new input
        """
        if len(bytes.fromhex(txid)) != 32:
            raise PSBTConstructionError(f"Invalid txid: {txid}")
        if vout < 0:
            raise PSBTConstructionError("Output index is out of bounds")
        if not 0 <= sequence <= 0xffffffff:
            raise PSBTConstructionError(f"Invalid sequence: {sequence}")
        if tap_internal_key is not None and len(tap_internal_key) != 32:
            raise PSBTConstructionError("Taproot internal key must be 32 bytes")

        self.inputs.append(TransactionInput(prev_txid=txid, output_n=vout, sequence=sequence))
        self.psbt_inputs.append(PSBTInput(
            witness_utxo=serialize_witness_utxo(value, script_pubkey),
            non_witness_utxo=non_witness_utxo,
            redeem_script=redeem_script,
            witness_script=witness_script,
            tap_leaf_scripts=[tap_leaf_script] if tap_leaf_script else [],
            tap_internal_key=tap_internal_key,
        ))
        self.input_values.append(value)
        return len(self.inputs) - 1

    def add_output(
        self,
        script: bytes,
        amount: int,
        witness_script: Optional[bytes] = None
    ) -> int:
        """
        Add an output to the PSBT.

        Args:
            script: Output locking script
            amount: Amount in satoshis
            witness_script: Witness script for P2WSH outputs

        Returns:
            Index of the new output
        """
        if not script:
            raise PSBTConstructionError("Output script cannot be empty")
        if amount < 0:
            raise PSBTConstructionError(f"Output amount cannot be negative: {amount}")

        self.outputs.append(TransactionOutput(value=amount, script=bytes(script)))
        self.psbt_outputs.append(PSBTOutput(witness_script=witness_script))
        return len(self.outputs) - 1

    def set_locktime(self, locktime: int) -> None:
        """
        Set a height based absolute locktime.

        Raises:
            PSBTValidationError: If the value would be read as a unix timestamp
        """
        if locktime < 0 or locktime >= LOCKTIME_HEIGHT_TIME_CUTOFF:
            raise PSBTValidationError("Invalid lock height")
        self.locktime = locktime

    def set_final_witness(self, input_index: int, witness: bytes) -> None:
        """
        Attach a serialized final script witness to an input.

        Args:
            input_index: Index of the input
            witness: Serialized witness stack
        """
        if input_index >= len(self.psbt_inputs):
            raise ValueError(f"Input index {input_index} out of range")
        self.psbt_inputs[input_index].final_scriptwitness = witness

    def total_input_value(self) -> int:
        return sum(self.input_values)

    def total_output_value(self) -> int:
        return sum(output.value for output in self.outputs)

    def fee(self) -> int:
        """Fee paid by the transaction: inputs minus outputs."""
        return self.total_input_value() - self.total_output_value()

    def _create_unsigned_transaction(self) -> bytes:
        """Create unsigned transaction data manually."""
        result = BytesIO()

        # Version (4 bytes, little endian)
        result.write(struct.pack('<I', self.version))

        result.write(serialize_compact_size(len(self.inputs)))
        for input_obj in self.inputs:
            # Previous outpoint (32 + 4 bytes), txid reversed for little endian
            result.write(bytes.fromhex(input_obj.prev_txid)[::-1])
            result.write(struct.pack('<I', input_obj.output_n))

            # Empty script (for unsigned transaction)
            result.write(b'\x00')
            result.write(struct.pack('<I', input_obj.sequence))

        result.write(serialize_compact_size(len(self.outputs)))
        for output_obj in self.outputs:
            result.write(struct.pack('<Q', output_obj.value))
            result.write(serialize_compact_size(len(output_obj.script)))
            result.write(output_obj.script)

        result.write(struct.pack('<I', self.locktime))

        return result.getvalue()

    def _serialize_global_data(self) -> bytes:
        """Serialize global PSBT data."""
        result = BytesIO()

        unsigned_tx_data = self._create_unsigned_transaction()
        kv = PSBTKeyValue(PSBTKeyType.PSBT_GLOBAL_UNSIGNED_TX.value, b'', unsigned_tx_data)
        result.write(kv.serialize())

        # PSBT version
        kv = PSBTKeyValue(PSBTKeyType.PSBT_GLOBAL_VERSION.value, b'', struct.pack('<I', 0))
        result.write(kv.serialize())

        # End marker
        result.write(b'\x00')
        return result.getvalue()

    def serialize(self) -> bytes:
        """
        Serialize PSBT to binary format.

        Returns:
            Serialized PSBT data
        """
        result = BytesIO()

        # PSBT magic bytes
        result.write(b'psbt\xff')
        result.write(self._serialize_global_data())

        for psbt_input in self.psbt_inputs:
            result.write(psbt_input.serialize())

        for psbt_output in self.psbt_outputs:
            result.write(psbt_output.serialize())

        return result.getvalue()

    def to_base64(self) -> str:
        """
        Serialize PSBT to base64 format.

        Returns:
            Base64-encoded PSBT string
        """
        return base64.b64encode(self.serialize()).decode('ascii')

    def to_hex(self) -> str:
        return self.serialize().hex()

    def get_transaction_id(self) -> str:
        """
        Get the transaction ID of the unsigned transaction.

        Returns:
            Transaction ID as hex string
        """
        tx_hash = double_sha256(self._create_unsigned_transaction())
        # Reverse bytes for display (big endian)
        return tx_hash[::-1].hex()

    def get_fee_info(self) -> Dict[str, int]:
        """
        Calculate fee information for the transaction.

        Returns:
            Dictionary with total input, total output and fee
        """
        return {
            'total_input': self.total_input_value(),
            'total_output': self.total_output_value(),
            'fee': self.fee(),
        }

    def validate_structure(self) -> List[str]:
        """
        Validate PSBT structure and return list of issues.

        Returns:
            List of validation issues (empty if valid)
        """
        issues = []

        if not self.inputs:
            issues.append("PSBT must have at least one input")

        if not self.outputs:
            issues.append("PSBT must have at least one output")

        if len(self.inputs) != len(self.psbt_inputs):
            issues.append("Number of inputs must match number of PSBT input records")

        if len(self.outputs) != len(self.psbt_outputs):
            issues.append("Number of outputs must match number of PSBT output records")

        for i, psbt_input in enumerate(self.psbt_inputs):
            if not psbt_input.witness_utxo and not psbt_input.non_witness_utxo:
                issues.append(f"Input {i} must have either witness_utxo or non_witness_utxo")

        if self.inputs and self.fee() < 0:
            issues.append("Outputs exceed inputs")

        return issues
