"""
Covenant Scripts - Protocol Constants
"""

# Public key lengths
X_ONLY_PK_LENGTH = 32
COMPRESSED_PK_LENGTH = 33

# External-chain (EVM) address length
EVM_ADDRESS_LENGTH = 20

# Data-embed layout
MAGIC_BYTES_LENGTH = 4
DATA_EMBED_VERSION = 0
TIMELOCK_FIELD_LENGTH = 2

# Relative timelocks are BIP68 block counts
MAX_RELATIVE_TIMELOCK = 65535

# nLockTime values at or above this are unix timestamps
LOCKTIME_HEIGHT_TIME_CUTOFF = 500_000_000

# covenantV1 locking script fields
VALIDATOR_INDEX_LENGTH = 4
NONCE_LENGTH = 4

# Max size of a standard OP_RETURN payload
MAX_OP_RETURN_DATA = 80
