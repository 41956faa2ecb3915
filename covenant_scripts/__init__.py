"""
Covenant Scripts - Script Construction and Introspection

This module compiles the leaf scripts of the covenant staking, locking and
bridge protocols (timelock, unbonding, slashing, transfer and data embed
scripts), the P2WSH scripts of the single-script covenant generation, and
provides the narrow decompiler used to recover timelocks from them.
"""

from .opcodes import ScriptOpcode
from .builder import (
    ScriptBuilder,
    encode_script_number,
    decode_script_number,
    build_single_key_script,
    build_multi_key_script,
    build_timelock_script,
)
from .encoding import (
    ScriptElement,
    decompile,
    script_to_asm,
    read_number_operand,
    extract_timelock,
    is_op_return,
)
from .data_embed import (
    DataEmbedLayout,
    DataEmbedPayload,
    STAKING_LAYOUT,
    LOCKING_LAYOUT,
    BRIDGE_LAYOUT,
    COVENANT_V1_LAYOUT,
    build_data_embed_script,
    parse_data_embed_script,
)
from .script_data import (
    ScriptProfile,
    SlashableScriptData,
    SlashableScripts,
    BridgeScriptData,
    BridgeScripts,
)
from .exceptions import *

__all__ = [
    'ScriptOpcode',
    'ScriptBuilder',
    'encode_script_number',
    'decode_script_number',
    'build_single_key_script',
    'build_multi_key_script',
    'build_timelock_script',
    'ScriptElement',
    'decompile',
    'script_to_asm',
    'read_number_operand',
    'extract_timelock',
    'is_op_return',
    'DataEmbedLayout',
    'DataEmbedPayload',
    'STAKING_LAYOUT',
    'LOCKING_LAYOUT',
    'BRIDGE_LAYOUT',
    'COVENANT_V1_LAYOUT',
    'build_data_embed_script',
    'parse_data_embed_script',
    'ScriptProfile',
    'SlashableScriptData',
    'SlashableScripts',
    'BridgeScriptData',
    'BridgeScripts',
    'ScriptError',
    'InvalidScriptDataError',
    'ScriptDecodeError',
]

__version__ = '1.0.0'
