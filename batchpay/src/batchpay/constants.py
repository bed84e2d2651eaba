"""
Bitcoin protocol constants used by the batch payment pipeline.
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core. Change below this is folded into the fee.
STANDARD_DUST_LIMIT = 546  # satoshis

SATS_PER_BTC = 100_000_000

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

TX_VERSION = 2
TX_LOCKTIME = 0
# Final sequence: no RBF signalling, no relative timelock
SEQUENCE_FINAL = 0xFFFFFFFF

SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

# BIP341 signature message epoch
TAPROOT_SIGHASH_EPOCH = 0x00

# WIF version bytes
WIF_PREFIX_MAINNET = 0x80
WIF_PREFIX_TESTNET = 0xEF

# Legacy address version bytes
P2PKH_VERSIONS = {"mainnet": 0x00, "testnet": 0x6F}
P2SH_VERSIONS = {"mainnet": 0x05, "testnet": 0xC4}

BECH32_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

MEMPOOL_API_URLS = {
    "mainnet": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet/api",
    "signet": "https://mempool.space/signet/api",
    "regtest": "http://127.0.0.1:3002/api",
}
