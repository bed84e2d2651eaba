"""
Core data models shared by the wallet pipeline and the backends.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def is_mainnet(self) -> bool:
        return self is NetworkType.MAINNET


class SigningScheme(str, Enum):
    """Spending script of the funding address."""

    P2WPKH = "p2wpkh"  # witness v0 key hash, ECDSA
    P2TR = "p2tr"  # taproot key path, BIP340 Schnorr


@dataclass(frozen=True)
class UTXO:
    """Unspent output of the funding address.

    script_pubkey stays empty until the previous-output script has been
    looked up and checked against the funding script.
    """

    txid: str
    vout: int
    value: int
    script_pubkey: bytes = b""

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"UTXO {self.txid}:{self.vout} has negative value {self.value}")
        if len(bytes.fromhex(self.txid)) != 32:
            raise ValueError(f"Invalid txid: {self.txid}")

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def with_script(self, script_pubkey: bytes) -> UTXO:
        return replace(self, script_pubkey=script_pubkey)


@dataclass(frozen=True)
class RecipientOutput:
    address: str
    value: int
