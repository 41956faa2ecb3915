"""
Covenant Scripts - Opcode Table

Bitcoin Script opcodes used by the covenant script builders and the
narrow decompiler.
"""


class ScriptOpcode:
    """Bitcoin Script opcodes used in covenant construction."""

    # Constants
    OP_0 = 0x00
    OP_FALSE = OP_0
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_TRUE = OP_1
    OP_2 = 0x52
    OP_16 = 0x60

    # Flow control
    OP_IF = 0x63
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6a

    # Stack operations
    OP_DROP = 0x75
    OP_DUP = 0x76

    # Bitwise logic
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88

    # Arithmetic
    OP_NUMEQUAL = 0x9c
    OP_NUMEQUALVERIFY = 0x9d

    # Crypto
    OP_HASH160 = 0xa9
    OP_CHECKSIG = 0xac
    OP_CHECKSIGVERIFY = 0xad
    OP_CHECKMULTISIG = 0xae

    # Locktime
    OP_CHECKLOCKTIMEVERIFY = 0xb1
    OP_CHECKSEQUENCEVERIFY = 0xb2

    # Tapscript
    OP_CHECKSIGADD = 0xba

    @classmethod
    def is_small_int(cls, opcode: int) -> bool:
        """Check whether opcode is one of OP_1..OP_16."""
        return cls.OP_1 <= opcode <= cls.OP_16

    @classmethod
    def small_int_value(cls, opcode: int) -> int:
        """Value pushed by OP_1..OP_16."""
        if not cls.is_small_int(opcode):
            raise ValueError(f"Not a small integer opcode: {opcode:#04x}")
        return opcode - cls.OP_1 + 1

    @classmethod
    def names(cls) -> dict:
        """Map opcode values to their names (first alias wins)."""
        result = {}
        for name, value in vars(cls).items():
            if name.startswith('OP_') and isinstance(value, int) and value not in result:
                result[value] = name
        return result
