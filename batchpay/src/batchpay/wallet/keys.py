"""
Key material derivation from a WIF-encoded private key.

For P2WPKH the funding script commits to HASH160 of the compressed public key.
For P2TR the funding script commits to the BIP86 output key: the internal key
with even y, tweaked by H_TapTweak(internal_x) and no script tree.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

import base58
from coincurve import PrivateKey, PublicKey
from loguru import logger

from batchpay.constants import CURVE_ORDER, WIF_PREFIX_MAINNET, WIF_PREFIX_TESTNET
from batchpay.errors import InvalidKeyError
from batchpay.models import NetworkType, SigningScheme
from batchpay.wallet.address import (
    pubkey_to_p2wpkh_address,
    pubkey_to_p2wpkh_script,
    xonly_to_p2tr_address,
    xonly_to_p2tr_script,
)


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || data)"""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


@dataclass(frozen=True)
class KeyMaterial:
    """Signing keys plus the funding address and script derived from them."""

    scheme: SigningScheme
    network: NetworkType
    private_key: PrivateKey = field(repr=False)
    # Key actually used to sign. Same as private_key for P2WPKH, tweaked for P2TR.
    signing_key: PrivateKey = field(repr=False)
    public_key: bytes  # 33-byte compressed
    xonly_public_key: bytes  # 32-byte x coordinate of the (internal) key
    address: str
    script_pubkey: bytes
    output_key: bytes | None = None  # P2TR only

    def __post_init__(self) -> None:
        is_taproot = self.scheme is SigningScheme.P2TR
        if is_taproot != (self.output_key is not None):
            raise InvalidKeyError(
                f"{self.scheme.value} key material "
                f"{'requires' if is_taproot else 'cannot have'} a taproot output key"
            )

    @property
    def verification_key(self) -> bytes:
        """Public key that signatures are checked against."""
        if self.output_key is not None:
            return self.output_key
        return self.public_key


def decode_wif(wif: str, network: NetworkType | str) -> tuple[bytes, bool]:
    """
    Decode a WIF private key.

    Returns:
        (32-byte secret, compressed flag)

    Raises:
        InvalidKeyError: On bad encoding, wrong network or out-of-range scalar
    """
    network = NetworkType(network)
    try:
        payload = base58.b58decode_check(wif.strip())
    except ValueError as e:
        raise InvalidKeyError(f"Malformed WIF private key: {e}") from e

    if len(payload) == 34 and payload[-1] == 0x01:
        compressed = True
        secret = payload[1:33]
    elif len(payload) == 33:
        compressed = False
        secret = payload[1:]
    else:
        raise InvalidKeyError(f"Invalid WIF payload length: {len(payload)}")

    expected_prefix = WIF_PREFIX_MAINNET if network.is_mainnet else WIF_PREFIX_TESTNET
    if payload[0] != expected_prefix:
        raise InvalidKeyError(
            f"WIF version byte 0x{payload[0]:02x} does not match network {network.value} "
            f"(expected 0x{expected_prefix:02x})"
        )

    scalar = int.from_bytes(secret, "big")
    if not 0 < scalar < CURVE_ORDER:
        raise InvalidKeyError("Private key scalar out of range")

    return secret, compressed


def has_even_y(public_key: PublicKey) -> bool:
    return public_key.format(compressed=True)[0] == 0x02


def normalize_parity(private_key: PrivateKey) -> PrivateKey:
    """Return the scalar whose public key has even y (negating it if needed)."""
    if has_even_y(private_key.public_key):
        return private_key
    negated = CURVE_ORDER - int.from_bytes(private_key.secret, "big")
    return PrivateKey(negated.to_bytes(32, "big"))


def taproot_tweak(internal_key: bytes) -> bytes:
    """TapTweak scalar for a key-path-only output (no script tree)."""
    tweak = tagged_hash("TapTweak", internal_key)
    if int.from_bytes(tweak, "big") >= CURVE_ORDER:
        raise InvalidKeyError("Taproot tweak out of range")
    return tweak


def taproot_output_key(internal_key: bytes) -> bytes:
    """Compute the x-only output key Q = lift_x(P) + tG."""
    point = PublicKey(b"\x02" + internal_key)
    return point.add(taproot_tweak(internal_key)).format(compressed=True)[1:]


def tweak_private_key(private_key: PrivateKey) -> PrivateKey:
    """Signing key for the key path of a BIP86 output, normalized to even y."""
    internal = normalize_parity(private_key)
    internal_key = internal.public_key.format(compressed=True)[1:]
    tweak = int.from_bytes(taproot_tweak(internal_key), "big")
    tweaked = (int.from_bytes(internal.secret, "big") + tweak) % CURVE_ORDER
    if tweaked == 0:
        raise InvalidKeyError("Tweaked private key is zero")
    return normalize_parity(PrivateKey(tweaked.to_bytes(32, "big")))


def key_material_from_secret(
    secret: bytes,
    network: NetworkType | str,
    scheme: SigningScheme | str,
) -> KeyMaterial:
    """Derive key material from a raw 32-byte secret."""
    network = NetworkType(network)
    scheme = SigningScheme(scheme)

    scalar = int.from_bytes(secret, "big")
    if len(secret) != 32 or not 0 < scalar < CURVE_ORDER:
        raise InvalidKeyError("Private key scalar out of range")

    private_key = PrivateKey(secret)
    public_key = private_key.public_key.format(compressed=True)
    xonly = public_key[1:]

    if scheme is SigningScheme.P2WPKH:
        return KeyMaterial(
            scheme=scheme,
            network=network,
            private_key=private_key,
            signing_key=private_key,
            public_key=public_key,
            xonly_public_key=xonly,
            address=pubkey_to_p2wpkh_address(public_key, network),
            script_pubkey=pubkey_to_p2wpkh_script(public_key),
        )

    output_key = taproot_output_key(xonly)
    signing_key = tweak_private_key(private_key)
    if signing_key.public_key.format(compressed=True)[1:] != output_key:
        raise InvalidKeyError("Tweaked signing key does not match taproot output key")

    return KeyMaterial(
        scheme=scheme,
        network=network,
        private_key=private_key,
        signing_key=signing_key,
        public_key=public_key,
        xonly_public_key=xonly,
        address=xonly_to_p2tr_address(output_key, network),
        script_pubkey=xonly_to_p2tr_script(output_key),
        output_key=output_key,
    )


def load_key_material(
    wif: str,
    network: NetworkType | str,
    scheme: SigningScheme | str,
) -> KeyMaterial:
    """Decode a WIF key and derive the funding address for the given scheme."""
    secret, compressed = decode_wif(wif, network)
    scheme = SigningScheme(scheme)

    if scheme is SigningScheme.P2WPKH and not compressed:
        raise InvalidKeyError("P2WPKH requires a compressed WIF private key")

    keys = key_material_from_secret(secret, network, scheme)
    logger.info(f"Funding address ({keys.scheme.value}): {keys.address}")
    logger.debug(f"Expected scriptPubKey: {keys.script_pubkey.hex()}")
    return keys
