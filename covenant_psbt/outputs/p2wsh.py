"""
Covenant PSBT - P2WSH Output Construction Module

Witness scripts and output scripts for the P2WSH based protocol outputs:
m-of-n multisig bridge deposits and the single-script covenant outputs.
"""

from typing import List, Tuple

from covenant_scripts.builder import ScriptBuilder
from covenant_scripts.opcodes import ScriptOpcode

from ..constants import COMPRESSED_PK_LENGTH
from ..exceptions import InvalidScriptError
from ..utils import create_p2wsh_script


MAX_MULTISIG_KEYS = 15


def create_multisig_script(required_sigs: int, public_keys: List[bytes]) -> bytes:
    """
    Create multisig script: M <PubKey1> <PubKey2> ... <PubKeyN> N OP_CHECKMULTISIG

    Keys are committed in the order given.

    Args:
        required_sigs: Number of required signatures (M)
        public_keys: List of compressed public keys

    Returns:
        Witness script bytes
    """
    if not public_keys:
        raise InvalidScriptError("No keys provided")
    if required_sigs < 1 or required_sigs > len(public_keys):
        raise InvalidScriptError("Invalid required signatures count")
    if len(public_keys) > MAX_MULTISIG_KEYS:
        raise InvalidScriptError("Too many public keys for multisig")
    for pubkey in public_keys:
        if len(pubkey) != COMPRESSED_PK_LENGTH:
            raise InvalidScriptError(f"Invalid public key length: {len(pubkey)}")
    if len(set(bytes(pk) for pk in public_keys)) != len(public_keys):
        raise InvalidScriptError("Duplicate keys provided")

    builder = ScriptBuilder().push_number(required_sigs)
    for pubkey in public_keys:
        builder.push_data(bytes(pubkey))
    builder.push_number(len(public_keys))
    builder.push_opcode(ScriptOpcode.OP_CHECKMULTISIG)
    return builder.build()


def create_p2wsh_output(witness_script: bytes) -> Tuple[bytes, bytes]:
    """
    Create P2WSH output script from witness script.

    Args:
        witness_script: Witness script bytes

    Returns:
        Tuple of (p2wsh_script, witness_script)
    """
    if not witness_script:
        raise InvalidScriptError("Witness script cannot be empty")
    if len(witness_script) > 3600:
        raise InvalidScriptError("Witness script too large")
    return create_p2wsh_script(witness_script), bytes(witness_script)
