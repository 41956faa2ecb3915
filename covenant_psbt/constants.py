"""
Covenant PSBT - Protocol Constants
"""

from covenant_scripts.constants import (
    X_ONLY_PK_LENGTH,
    COMPRESSED_PK_LENGTH,
    LOCKTIME_HEIGHT_TIME_CUTOFF,
    MAX_RELATIVE_TIMELOCK,
)

# Outputs at or below this value are dust (BIP370 relay policy)
DUST_THRESHOLD = 546

# Sequences
RBF_SEQUENCE = 0xfffffffd
LOCKTIME_ENABLED_SEQUENCE = 0xfffffffe
FINAL_SEQUENCE = 0xffffffff

# OP_CHECKSEQUENCEVERIFY requires version 2
TRANSACTION_VERSION = 2
TAPSCRIPT_LEAF_VERSION = 0xc0

# Heuristic fee model sizes (bytes)
INPUT_SIZE_FOR_FEE_CAL = 180
OUTPUT_SIZE_FOR_FEE_CAL = 34
TX_BUFFER_SIZE_FOR_FEE_CAL = 10
ESTIMATED_OP_RETURN_SIZE = 40

# Script-aware fee model sizes (vbytes)
P2WPKH_INPUT_SIZE = 68
P2TR_INPUT_SIZE = 58
DEFAULT_INPUT_SIZE = 180
MAX_NON_LEGACY_OUTPUT_SIZE = 43
TX_BUFFER_SIZE_OVERHEAD = 11
WITHDRAW_TX_BUFFER_SIZE = 17
OP_RETURN_OUTPUT_VALUE_SIZE = 8
OP_RETURN_VALUE_SERIALIZE_SIZE = 1

# Wallets relaying at or below this rate get a fixed buffer
WALLET_RELAY_FEE_RATE_THRESHOLD = 2
LOW_RATE_ESTIMATION_ACCURACY_BUFFER = 30

__all__ = [
    'X_ONLY_PK_LENGTH',
    'COMPRESSED_PK_LENGTH',
    'LOCKTIME_HEIGHT_TIME_CUTOFF',
    'MAX_RELATIVE_TIMELOCK',
    'DUST_THRESHOLD',
    'RBF_SEQUENCE',
    'LOCKTIME_ENABLED_SEQUENCE',
    'FINAL_SEQUENCE',
    'TRANSACTION_VERSION',
    'TAPSCRIPT_LEAF_VERSION',
    'INPUT_SIZE_FOR_FEE_CAL',
    'OUTPUT_SIZE_FOR_FEE_CAL',
    'TX_BUFFER_SIZE_FOR_FEE_CAL',
    'ESTIMATED_OP_RETURN_SIZE',
    'P2WPKH_INPUT_SIZE',
    'P2TR_INPUT_SIZE',
    'DEFAULT_INPUT_SIZE',
    'MAX_NON_LEGACY_OUTPUT_SIZE',
    'TX_BUFFER_SIZE_OVERHEAD',
    'WITHDRAW_TX_BUFFER_SIZE',
    'OP_RETURN_OUTPUT_VALUE_SIZE',
    'OP_RETURN_VALUE_SERIALIZE_SIZE',
    'WALLET_RELAY_FEE_RATE_THRESHOLD',
    'LOW_RATE_ESTIMATION_ACCURACY_BUFFER',
]
