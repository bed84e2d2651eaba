"""
Input signing for P2WPKH (BIP143 + ECDSA) and P2TR key path (BIP341 + BIP340).

The signing scheme is chosen once per run through create_signer(); each signer
computes the sighash, signs, verifies its own signature and knows how to place
it into the input's witness.
"""

from __future__ import annotations

import hashlib
import secrets
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass

from coincurve import PublicKey, PublicKeyXOnly
from loguru import logger

from batchpay.constants import SIGHASH_ALL, SIGHASH_DEFAULT, TAPROOT_SIGHASH_EPOCH
from batchpay.errors import SignatureInvalidError
from batchpay.models import SigningScheme
from batchpay.wallet.address import hash160
from batchpay.wallet.keys import KeyMaterial, tagged_hash
from batchpay.wallet.transaction import (
    Transaction,
    TxInput,
    hash256,
    serialize_script,
)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def create_p2wpkh_script_code(pubkey_bytes: bytes) -> bytes:
    """Create the scriptCode for P2WPKH signing (BIP 143).

    For P2WPKH, the scriptCode is the P2PKH script:
    OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG

    Returns 25 bytes (without length prefix - the preimage serialization adds that).
    """
    return b"\x76\xa9\x14" + hash160(pubkey_bytes) + b"\x88\xac"


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash for a witness v0 input (SIGHASH_ALL)."""
    if input_index >= len(tx.inputs):
        raise IndexError(f"Input index {input_index} out of range")
    if sighash_type != SIGHASH_ALL:
        raise ValueError(f"Unsupported sighash type: {sighash_type:#x}")

    hash_prevouts = hash256(b"".join(inp.outpoint for inp in tx.inputs))
    hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        struct.pack("<I", tx.version)
        + hash_prevouts
        + hash_sequence
        + target_input.outpoint
        + serialize_script(script_code)
        + struct.pack("<Q", value)
        + struct.pack("<I", target_input.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )

    return hash256(preimage)


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    sighash_type: int = SIGHASH_DEFAULT,
) -> bytes:
    """
    BIP341 signature hash for a key path spend without annex.

    Commits to the amounts and scriptPubKeys of every spent output, so each
    input must carry the value and script of the output it spends.
    """
    if input_index >= len(tx.inputs):
        raise IndexError(f"Input index {input_index} out of range")
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise ValueError(f"Unsupported sighash type: {sighash_type:#x}")

    sha_prevouts = sha256(b"".join(inp.outpoint for inp in tx.inputs))
    sha_amounts = sha256(b"".join(struct.pack("<Q", inp.value) for inp in tx.inputs))
    sha_scriptpubkeys = sha256(b"".join(serialize_script(inp.script_pubkey) for inp in tx.inputs))
    sha_sequences = sha256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    sha_outputs = sha256(b"".join(out.serialize() for out in tx.outputs))

    spend_type = 0x00  # key path, no annex

    sig_msg = (
        bytes([TAPROOT_SIGHASH_EPOCH, sighash_type])
        + struct.pack("<I", tx.version)
        + struct.pack("<I", tx.locktime)
        + sha_prevouts
        + sha_amounts
        + sha_scriptpubkeys
        + sha_sequences
        + sha_outputs
        + bytes([spend_type])
        + struct.pack("<I", input_index)
    )

    return tagged_hash("TapSighash", sig_msg)


@dataclass(frozen=True)
class InputSignature:
    """Verified signature for one input, tagged with the scheme that produced it."""

    input_index: int
    scheme: SigningScheme
    signature: bytes
    sighash: bytes
    script_pubkey: bytes  # previous output script the sighash committed to


class InputSigner(ABC):
    scheme: SigningScheme

    def __init__(self, keys: KeyMaterial):
        if keys.scheme is not self.scheme:
            raise ValueError(f"{type(self).__name__} cannot sign with {keys.scheme.value} keys")
        self.keys = keys

    @abstractmethod
    def compute_sighash(self, tx: Transaction, input_index: int) -> bytes:
        """Signature hash for the given input"""

    @abstractmethod
    def sign(self, sighash: bytes) -> bytes:
        """Sign a sighash, returning the signature as placed in the witness"""

    @abstractmethod
    def verify(self, signature: bytes, sighash: bytes) -> bool:
        """Check a signature against the sighash and our public key"""

    @abstractmethod
    def attach_to_input(self, tx_input: TxInput, signature: InputSignature) -> None:
        """Place the signature into the input's witness"""

    def sign_input(self, tx: Transaction, input_index: int) -> InputSignature:
        """
        Sign one input and verify the result before handing it out.

        Raises:
            SignatureInvalidError: If the fresh signature does not verify
        """
        sighash = self.compute_sighash(tx, input_index)
        signature = self.sign(sighash)

        if not self.verify(signature, sighash):
            logger.error(
                f"Signature verification failed for input #{input_index}: "
                f"sighash={sighash.hex()} signature={signature.hex()}"
            )
            raise SignatureInvalidError(input_index, f"sighash {sighash.hex()}")

        logger.debug(f"Input #{input_index} signed and verified ({self.scheme.value})")
        return InputSignature(
            input_index=input_index,
            scheme=self.scheme,
            signature=signature,
            sighash=sighash,
            script_pubkey=tx.inputs[input_index].script_pubkey,
        )


class WitnessKeyHashSigner(InputSigner):
    """ECDSA signer for P2WPKH inputs."""

    scheme = SigningScheme.P2WPKH
    sighash_type = SIGHASH_ALL

    def __init__(self, keys: KeyMaterial):
        super().__init__(keys)
        self.script_code = create_p2wpkh_script_code(keys.public_key)

    def compute_sighash(self, tx: Transaction, input_index: int) -> bytes:
        value = tx.inputs[input_index].value
        return compute_sighash_segwit(tx, input_index, self.script_code, value, self.sighash_type)

    def sign(self, sighash: bytes) -> bytes:
        # Sign the pre-hashed sighash (it's already SHA256d)
        # coincurve's sign() with hasher=None skips hashing
        der = self.keys.signing_key.sign(sighash, hasher=None)
        return der + bytes([self.sighash_type])

    def verify(self, signature: bytes, sighash: bytes) -> bool:
        if not signature or signature[-1] != self.sighash_type:
            return False
        try:
            return PublicKey(self.keys.public_key).verify(signature[:-1], sighash, hasher=None)
        except ValueError:
            # Malformed DER
            return False

    def attach_to_input(self, tx_input: TxInput, signature: InputSignature) -> None:
        tx_input.witness = [signature.signature, self.keys.public_key]


class TaprootKeyPathSigner(InputSigner):
    """BIP340 Schnorr signer for P2TR key path inputs."""

    scheme = SigningScheme.P2TR
    sighash_type = SIGHASH_DEFAULT

    def __init__(self, keys: KeyMaterial, aux_randomness: bytes | None = None):
        super().__init__(keys)
        if aux_randomness is not None and len(aux_randomness) != 32:
            raise ValueError("aux_randomness must be 32 bytes")
        self.aux_randomness = aux_randomness

    def compute_sighash(self, tx: Transaction, input_index: int) -> bytes:
        return compute_sighash_taproot(tx, input_index, self.sighash_type)

    def sign(self, sighash: bytes) -> bytes:
        aux = self.aux_randomness or secrets.token_bytes(32)
        signature = self.keys.signing_key.sign_schnorr(sighash, aux)
        # SIGHASH_DEFAULT signatures carry no trailing hash type byte
        if self.sighash_type != SIGHASH_DEFAULT:
            signature += bytes([self.sighash_type])
        return signature

    def verify(self, signature: bytes, sighash: bytes) -> bool:
        if len(signature) != 64:
            return False
        return PublicKeyXOnly(self.keys.verification_key).verify(signature, sighash)

    def attach_to_input(self, tx_input: TxInput, signature: InputSignature) -> None:
        tx_input.witness = [signature.signature]


def create_signer(keys: KeyMaterial) -> InputSigner:
    if keys.scheme is SigningScheme.P2WPKH:
        return WitnessKeyHashSigner(keys)
    if keys.scheme is SigningScheme.P2TR:
        return TaprootKeyPathSigner(keys)
    raise ValueError(f"Unsupported signing scheme: {keys.scheme}")


def sign_transaction(tx: Transaction, signer: InputSigner) -> list[InputSignature]:
    """Sign every input in ascending index order."""
    logger.info(f"Signing {len(tx.inputs)} input(s) with {signer.scheme.value}")
    return [signer.sign_input(tx, index) for index in range(len(tx.inputs))]
