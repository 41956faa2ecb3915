"""
Covenant PSBT - Address Decoding

Converts the change, withdrawal, slashing and recipient addresses handed to
the transaction builders into output scripts. Segwit addresses (bech32 for
version 0, bech32m for version 1+) go through ``bitcoinlib.encoding``;
Base58Check addresses (P2PKH, P2SH) are decoded with the ``base58`` package.
"""

import base58
from bitcoinlib.encoding import EncodingError, addr_bech32_to_pubkeyhash, pubkeyhash_to_addr_bech32

from .exceptions import InvalidAddressError


NETWORKS = {
    'bitcoin': {'hrp': 'bc', 'p2pkh': 0x00, 'p2sh': 0x05},
    'testnet': {'hrp': 'tb', 'p2pkh': 0x6f, 'p2sh': 0xc4},
    'signet': {'hrp': 'tb', 'p2pkh': 0x6f, 'p2sh': 0xc4},
    'regtest': {'hrp': 'bcrt', 'p2pkh': 0x6f, 'p2sh': 0xc4},
}

# BIP350 checksum constants
BECH32_CONST = 1
BECH32M_CONST = 0x2bc830a3


def _network_params(network: str) -> dict:
    try:
        return NETWORKS[network]
    except KeyError:
        raise InvalidAddressError(f"Unsupported network: {network}") from None


def _is_witness_script(script: bytes) -> bool:
    return (
        len(script) >= 4
        and (script[0] == 0x00 or 0x51 <= script[0] <= 0x60)
        and script[1] == len(script) - 2
    )


def decode_segwit_address(address: str) -> bytes:
    """
    Decode a segwit address into its witness output script.

    Checksum, witness version and program length rules (BIP173/BIP350) are
    enforced by bitcoinlib.

    Args:
        address: bech32 or bech32m address

    Returns:
        ``<version opcode> <program length> <program>``

    Raises:
        InvalidAddressError: If bitcoinlib rejects the address
    """
    try:
        script = addr_bech32_to_pubkeyhash(address, include_witver=True)
    except EncodingError as e:
        raise InvalidAddressError(f"Invalid segwit address {address}: {e}") from e
    script = bytes(script)
    if not _is_witness_script(script):
        raise InvalidAddressError(f"Invalid segwit address {address}: unexpected witness program")
    return script


def address_to_output_script(address: str, network: str = 'testnet') -> bytes:
    """
    Convert an address to the output script it pays to.

    Args:
        address: Base58Check or bech32/bech32m address
        network: One of ``bitcoin``, ``testnet``, ``signet``, ``regtest``

    Returns:
        scriptPubKey bytes

    Raises:
        InvalidAddressError: If the address is malformed or belongs to
            another network
    """
    params = _network_params(network)
    if not isinstance(address, str) or not address:
        raise InvalidAddressError("Invalid address: empty")

    if address.lower().startswith(params['hrp'] + '1'):
        return decode_segwit_address(address)

    try:
        payload = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid address {address}: {e}") from e
    if len(payload) != 21:
        raise InvalidAddressError(f"Invalid address payload length: {len(payload)}")

    version, hash160 = payload[0], payload[1:]
    if version == params['p2pkh']:
        # OP_DUP OP_HASH160 <hash> OP_EQUALVERIFY OP_CHECKSIG
        return b'\x76\xa9\x14' + hash160 + b'\x88\xac'
    if version == params['p2sh']:
        # OP_HASH160 <hash> OP_EQUAL
        return b'\xa9\x14' + hash160 + b'\x87'
    raise InvalidAddressError(f"Address {address} is not valid for {network}")


def encode_segwit_address(program: bytes, version: int, network: str = 'testnet') -> str:
    """
    Encode a witness program as a bech32 (v0) or bech32m (v1+) address.

    Used to display the addresses of protocol outputs.
    """
    params = _network_params(network)
    checksum_xor = BECH32_CONST if version == 0 else BECH32M_CONST
    try:
        return pubkeyhash_to_addr_bech32(
            bytes(program), prefix=params['hrp'], witver=version, checksum_xor=checksum_xor
        )
    except EncodingError as e:
        raise InvalidAddressError(f"Cannot encode witness program: {e}") from e


def output_script_to_address(script: bytes, network: str = 'testnet') -> str:
    """Render a segwit output script (P2WPKH, P2WSH, P2TR) as an address."""
    if _is_witness_script(script):
        version = 0 if script[0] == 0x00 else script[0] - 0x50
        return encode_segwit_address(script[2:], version, network)
    raise InvalidAddressError("Output script has no segwit address form")


__all__ = [
    'NETWORKS',
    'address_to_output_script',
    'output_script_to_address',
    'encode_segwit_address',
    'decode_segwit_address',
]
