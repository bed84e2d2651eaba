"""
Bitcoin address encoding and scriptPubKey helpers.

Segwit v0 addresses use bech32 (BIP173), witness v1+ (taproot) addresses use
bech32m (BIP350). Legacy base58 addresses are supported as payment targets.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

import base58

from batchpay.constants import BECH32_HRP, P2PKH_VERSIONS, P2SH_VERSIONS
from batchpay.errors import InvalidAddressError
from batchpay.models import NetworkType

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

OP_0 = 0x00
OP_1 = 0x51


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32"""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int], const: int = BECH32_CONST) -> list[int]:
    """Create bech32 or bech32m checksum"""
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ const
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_encode(hrp: str, data: list[int], const: int = BECH32_CONST) -> str:
    """Encode bech32 string"""
    combined = data + bech32_create_checksum(hrp, data, const)
    return hrp + "1" + "".join([BECH32_CHARSET[d] for d in combined])


def bech32_decode(bech: str) -> tuple[str, list[int], int]:
    """
    Decode a bech32/bech32m string.

    Returns:
        (hrp, data without checksum, checksum constant)
    """
    if any(ord(x) < 33 or ord(x) > 126 for x in bech):
        raise InvalidAddressError(f"Invalid characters in address: {bech!r}")
    if bech.lower() != bech and bech.upper() != bech:
        raise InvalidAddressError(f"Mixed case address: {bech}")

    bech = bech.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech) or len(bech) > 90:
        raise InvalidAddressError(f"Malformed bech32 address: {bech}")
    if not all(x in BECH32_CHARSET for x in bech[pos + 1 :]):
        raise InvalidAddressError(f"Invalid bech32 data characters: {bech}")

    hrp = bech[:pos]
    data = [BECH32_CHARSET.find(x) for x in bech[pos + 1 :]]
    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise InvalidAddressError(f"Bad bech32 checksum: {bech}")

    return hrp, data[:-6], const


def convertbits(data: Iterable[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or (value >> frombits):
            raise ValueError("Invalid bits")
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


def encode_segwit_address(hrp: str, witness_version: int, witness_program: bytes) -> str:
    const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    return bech32_encode(hrp, [witness_version] + convertbits(witness_program, 8, 5), const)


def decode_segwit_address(hrp: str, address: str) -> tuple[int, bytes]:
    """
    Decode a segwit address for the given HRP.

    Returns:
        (witness_version, witness_program)
    """
    hrp_got, data, const = bech32_decode(address)
    if hrp_got != hrp:
        raise InvalidAddressError(f"Address {address} is not for this network (expected {hrp}1...)")
    if not data:
        raise InvalidAddressError(f"Empty witness data: {address}")

    witness_version = data[0]
    try:
        program = bytes(convertbits(data[1:], 5, 8, pad=False))
    except ValueError as e:
        raise InvalidAddressError(f"Invalid witness program in {address}: {e}") from e

    if witness_version > 16 or not 2 <= len(program) <= 40:
        raise InvalidAddressError(f"Invalid witness program in {address}")
    if witness_version == 0 and len(program) not in (20, 32):
        raise InvalidAddressError(f"Invalid v0 witness program length {len(program)}: {address}")

    expected_const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    if const != expected_const:
        raise InvalidAddressError(
            f"Wrong checksum variant for witness v{witness_version}: {address}"
        )

    return witness_version, program


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """Create P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return bytes([OP_0, 0x14]) + hash160(pubkey)


def xonly_to_p2tr_script(output_key: bytes) -> bytes:
    """Create P2TR scriptPubKey (OP_1 <32-byte-output-key>)"""
    if len(output_key) != 32:
        raise ValueError(f"Invalid x-only key length: {len(output_key)}")
    return bytes([OP_1, 0x20]) + output_key


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    hrp = BECH32_HRP[NetworkType(network).value]
    return encode_segwit_address(hrp, 0, hash160(pubkey))


def xonly_to_p2tr_address(output_key: bytes, network: NetworkType | str = "mainnet") -> str:
    hrp = BECH32_HRP[NetworkType(network).value]
    return encode_segwit_address(hrp, 1, output_key)


def _legacy_versions(network: NetworkType) -> tuple[int, int]:
    key = "mainnet" if network.is_mainnet else "testnet"
    return P2PKH_VERSIONS[key], P2SH_VERSIONS[key]


def address_to_scriptpubkey(address: str, network: NetworkType | str = "mainnet") -> bytes:
    """
    Convert a Bitcoin address to scriptPubKey.

    Supports:
    - P2WPKH / P2WSH (bech32, witness v0)
    - P2TR and future witness versions (bech32m)
    - P2PKH / P2SH (base58)
    """
    network = NetworkType(network)
    address = address.strip()
    hrp = BECH32_HRP[network.value]

    if address.lower().startswith(hrp + "1"):
        witness_version, program = decode_segwit_address(hrp, address)
        version_op = OP_0 if witness_version == 0 else OP_1 + witness_version - 1
        return bytes([version_op, len(program)]) + program

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid address for {network.value}: {address}") from e

    if len(decoded) != 21:
        raise InvalidAddressError(f"Invalid base58 payload length: {address}")

    version, payload = decoded[0], decoded[1:]
    p2pkh_version, p2sh_version = _legacy_versions(network)

    if version == p2pkh_version:
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version == p2sh_version:
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise InvalidAddressError(f"Unknown address version {version} for {network.value}: {address}")


def scriptpubkey_to_address(scriptpubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    """Convert scriptPubKey to address."""
    network = NetworkType(network)
    hrp = BECH32_HRP[network.value]

    # Witness v0..v16: OP_n <2..40 byte program>
    if (
        len(scriptpubkey) >= 4
        and (scriptpubkey[0] == OP_0 or OP_1 <= scriptpubkey[0] <= OP_1 + 15)
        and scriptpubkey[1] == len(scriptpubkey) - 2
    ):
        witness_version = 0 if scriptpubkey[0] == OP_0 else scriptpubkey[0] - OP_1 + 1
        return encode_segwit_address(hrp, witness_version, scriptpubkey[2:])

    p2pkh_version, p2sh_version = _legacy_versions(network)
    if (
        len(scriptpubkey) == 25
        and scriptpubkey[:3] == bytes([0x76, 0xA9, 0x14])
        and scriptpubkey[23:] == bytes([0x88, 0xAC])
    ):
        return base58.b58encode_check(bytes([p2pkh_version]) + scriptpubkey[3:23]).decode("ascii")
    if (
        len(scriptpubkey) == 23
        and scriptpubkey[:2] == bytes([0xA9, 0x14])
        and scriptpubkey[22] == 0x87
    ):
        return base58.b58encode_check(bytes([p2sh_version]) + scriptpubkey[2:22]).decode("ascii")

    raise ValueError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")
