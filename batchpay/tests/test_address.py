"""
Tests for address encoding and scriptPubKey conversion.
"""

import pytest
from conftest import MAINNET_P2PKH, MAINNET_P2SH, MAINNET_P2TR, MAINNET_P2WPKH

from batchpay.errors import InvalidAddressError
from batchpay.wallet.address import (
    BECH32_CONST,
    BECH32M_CONST,
    address_to_scriptpubkey,
    bech32_decode,
    bech32_encode,
    convertbits,
    decode_segwit_address,
    hash160,
    pubkey_to_p2wpkh_address,
    pubkey_to_p2wpkh_script,
    scriptpubkey_to_address,
    xonly_to_p2tr_address,
    xonly_to_p2tr_script,
)

GENERATOR_PUBKEY = bytes.fromhex(
    "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
)
GENERATOR_HASH160 = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")
BIP86_OUTPUT_KEY = bytes.fromhex(
    "a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c"
)


class TestHash160:
    def test_generator_point(self):
        assert hash160(GENERATOR_PUBKEY) == GENERATOR_HASH160


class TestSegwitEncoding:
    def test_p2wpkh_mainnet(self):
        assert pubkey_to_p2wpkh_address(GENERATOR_PUBKEY, "mainnet") == MAINNET_P2WPKH

    def test_p2wpkh_testnet(self):
        address = pubkey_to_p2wpkh_address(GENERATOR_PUBKEY, "testnet")
        assert address == "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"

    def test_p2wpkh_regtest_prefix(self):
        assert pubkey_to_p2wpkh_address(GENERATOR_PUBKEY, "regtest").startswith("bcrt1q")

    def test_p2tr_uses_bech32m(self):
        address = xonly_to_p2tr_address(BIP86_OUTPUT_KEY, "mainnet")
        assert address == MAINNET_P2TR
        _, _, const = bech32_decode(address)
        assert const == BECH32M_CONST

    def test_decode_round_trip(self):
        version, program = decode_segwit_address("bc", MAINNET_P2TR)
        assert version == 1
        assert program == BIP86_OUTPUT_KEY

    def test_uppercase_accepted(self):
        version, program = decode_segwit_address("bc", MAINNET_P2WPKH.upper())
        assert version == 0
        assert program == GENERATOR_HASH160

    def test_mixed_case_rejected(self):
        mixed = MAINNET_P2WPKH[:10] + MAINNET_P2WPKH[10:].upper()
        with pytest.raises(InvalidAddressError, match="Mixed case"):
            bech32_decode(mixed)

    def test_bad_checksum_rejected(self):
        corrupted = MAINNET_P2WPKH[:-1] + ("q" if MAINNET_P2WPKH[-1] != "q" else "p")
        with pytest.raises(InvalidAddressError, match="checksum"):
            bech32_decode(corrupted)

    def test_taproot_with_bech32_checksum_rejected(self):
        wrong_variant = bech32_encode("bc", [1] + convertbits(BIP86_OUTPUT_KEY, 8, 5), BECH32_CONST)
        with pytest.raises(InvalidAddressError, match="checksum variant"):
            decode_segwit_address("bc", wrong_variant)

    def test_v0_with_bech32m_checksum_rejected(self):
        wrong_variant = bech32_encode(
            "bc", [0] + convertbits(GENERATOR_HASH160, 8, 5), BECH32M_CONST
        )
        with pytest.raises(InvalidAddressError, match="checksum variant"):
            decode_segwit_address("bc", wrong_variant)

    def test_invalid_v0_program_length(self):
        address = bech32_encode("bc", [0] + convertbits(bytes(25), 8, 5), BECH32_CONST)
        with pytest.raises(InvalidAddressError, match="v0 witness program length"):
            decode_segwit_address("bc", address)


class TestAddressToScriptPubKey:
    def test_p2wpkh(self):
        script = address_to_scriptpubkey(MAINNET_P2WPKH, "mainnet")
        assert script.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_p2tr(self):
        script = address_to_scriptpubkey(MAINNET_P2TR, "mainnet")
        assert script == b"\x51\x20" + BIP86_OUTPUT_KEY

    def test_p2pkh(self):
        script = address_to_scriptpubkey(MAINNET_P2PKH, "mainnet")
        assert len(script) == 25
        assert script[:3] == bytes([0x76, 0xA9, 0x14])
        assert script[-2:] == bytes([0x88, 0xAC])

    def test_p2sh(self):
        script = address_to_scriptpubkey(MAINNET_P2SH, "mainnet")
        assert len(script) == 23
        assert script[:2] == bytes([0xA9, 0x14])
        assert script[-1] == 0x87

    def test_surrounding_whitespace_ignored(self):
        assert address_to_scriptpubkey(f"  {MAINNET_P2WPKH}\n") == address_to_scriptpubkey(
            MAINNET_P2WPKH
        )

    def test_mainnet_address_on_testnet_rejected(self):
        with pytest.raises(InvalidAddressError):
            address_to_scriptpubkey(MAINNET_P2WPKH, "testnet")

    def test_testnet_address_on_mainnet_rejected(self):
        with pytest.raises(InvalidAddressError):
            address_to_scriptpubkey("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx", "mainnet")

    def test_legacy_mainnet_address_on_testnet_rejected(self):
        with pytest.raises(InvalidAddressError, match="Unknown address version"):
            address_to_scriptpubkey(MAINNET_P2PKH, "testnet")

    def test_garbage_rejected(self):
        with pytest.raises(InvalidAddressError):
            address_to_scriptpubkey("not-an-address", "mainnet")


class TestScriptPubKeyToAddress:
    @pytest.mark.parametrize(
        "address", [MAINNET_P2WPKH, MAINNET_P2TR, MAINNET_P2PKH, MAINNET_P2SH]
    )
    def test_round_trip(self, address):
        script = address_to_scriptpubkey(address, "mainnet")
        assert scriptpubkey_to_address(script, "mainnet") == address

    def test_script_builders(self):
        assert pubkey_to_p2wpkh_script(GENERATOR_PUBKEY) == b"\x00\x14" + GENERATOR_HASH160
        assert xonly_to_p2tr_script(BIP86_OUTPUT_KEY) == b"\x51\x20" + BIP86_OUTPUT_KEY

    def test_script_builders_reject_bad_lengths(self):
        with pytest.raises(ValueError):
            pubkey_to_p2wpkh_script(GENERATOR_PUBKEY[1:])
        with pytest.raises(ValueError):
            xonly_to_p2tr_script(GENERATOR_PUBKEY)

    def test_unsupported_script(self):
        with pytest.raises(ValueError, match="Unsupported scriptPubKey"):
            scriptpubkey_to_address(b"\x6a\x04test", "mainnet")
