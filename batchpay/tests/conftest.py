"""
Test configuration for batchpay tests.
"""

from __future__ import annotations

import asyncio

import base58
import pytest

from batchpay.backends.base import BlockchainBackend
from batchpay.errors import BroadcastError, FetchError
from batchpay.models import UTXO, NetworkType, RecipientOutput, SigningScheme
from batchpay.wallet.keys import KeyMaterial, key_material_from_secret
from batchpay.wallet.transaction import parse_transaction

# Test key (not for production use!)
TEST_SECRET = bytes.fromhex("0c28fca386c7a227600b2fe50b7cae11ec86d3bf1fbe471be89827e19d72aa1d")

# BIP173 / BIP350 example addresses
MAINNET_P2WPKH = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
MAINNET_P2TR = "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
MAINNET_P2PKH = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
MAINNET_P2SH = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"


def make_wif(secret: bytes, network: str = "mainnet", compressed: bool = True) -> str:
    prefix = b"\x80" if network == "mainnet" else b"\xef"
    suffix = b"\x01" if compressed else b""
    return base58.b58encode_check(prefix + secret + suffix).decode("ascii")


def make_txid(n: int) -> str:
    return f"{n:064x}"


def make_utxos(values: list[int], script_pubkey: bytes = b"") -> list[UTXO]:
    return [
        UTXO(txid=make_txid(i + 1), vout=i % 3, value=value, script_pubkey=script_pubkey)
        for i, value in enumerate(values)
    ]


def make_recipients(count: int, value: int = 10_000) -> list[RecipientOutput]:
    addresses = [MAINNET_P2WPKH, MAINNET_P2TR, MAINNET_P2PKH, MAINNET_P2SH]
    return [
        RecipientOutput(address=addresses[i % len(addresses)], value=value) for i in range(count)
    ]


class FakeBackend(BlockchainBackend):
    """In-memory backend recording every call."""

    def __init__(
        self,
        utxos: list[UTXO] | None = None,
        scripts: dict[tuple[str, int], bytes] | None = None,
        fee_rate: float | None = 2.0,
        broadcast_error: str | None = None,
        delay: float = 0.0,
    ):
        self.utxos = list(utxos or [])
        self.scripts = dict(scripts or {})
        self.fee_rate = fee_rate
        self.broadcast_error = broadcast_error
        self.delay = delay
        self.fee_priorities: list[str] = []
        self.script_lookups: list[tuple[str, int]] = []
        self.broadcasts: list[str] = []
        self.rejected: list[str] = []
        self.closed = False

    async def get_utxos(self, address: str) -> list[UTXO]:
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.utxos)

    async def get_output_script(self, txid: str, vout: int) -> bytes:
        self.script_lookups.append((txid, vout))
        try:
            return self.scripts[(txid, vout)]
        except KeyError:
            raise FetchError(f"Output {txid}:{vout} not found") from None

    async def get_recommended_fee_rate(self, priority: str = "halfHourFee") -> float:
        self.fee_priorities.append(priority)
        if self.fee_rate is None:
            raise FetchError("Fee service unavailable")
        return self.fee_rate

    async def broadcast_transaction(self, tx_hex: str) -> str:
        if self.broadcast_error is not None:
            self.rejected.append(tx_hex)
            raise BroadcastError(self.broadcast_error)
        self.broadcasts.append(tx_hex)
        return parse_transaction(bytes.fromhex(tx_hex)).txid

    async def close(self) -> None:
        self.closed = True


def funded_backend(keys: KeyMaterial, values: list[int], **kwargs) -> FakeBackend:
    """Backend holding UTXOs of the given values, all paying to keys' funding script."""
    utxos = make_utxos(values)
    scripts = {(u.txid, u.vout): keys.script_pubkey for u in utxos}
    return FakeBackend(utxos=utxos, scripts=scripts, **kwargs)


@pytest.fixture
def test_wif() -> str:
    return make_wif(TEST_SECRET)


@pytest.fixture
def p2wpkh_keys() -> KeyMaterial:
    return key_material_from_secret(TEST_SECRET, NetworkType.MAINNET, SigningScheme.P2WPKH)


@pytest.fixture
def p2tr_keys() -> KeyMaterial:
    return key_material_from_secret(TEST_SECRET, NetworkType.MAINNET, SigningScheme.P2TR)


@pytest.fixture(params=[SigningScheme.P2WPKH, SigningScheme.P2TR], ids=lambda s: s.value)
def keys(request) -> KeyMaterial:
    return key_material_from_secret(TEST_SECRET, NetworkType.MAINNET, request.param)
