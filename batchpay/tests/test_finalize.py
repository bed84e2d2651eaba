"""
Tests for transaction finalization.
"""

import dataclasses

import pytest
from conftest import make_recipients, make_utxos

from batchpay.errors import FinalizationError
from batchpay.wallet.fees import estimate_vsize
from batchpay.wallet.finalize import FinalTransaction, finalize_transaction
from batchpay.wallet.selection import select_utxos
from batchpay.wallet.signing import create_signer, sign_transaction
from batchpay.wallet.transaction import build_transaction, parse_transaction


def build_and_sign(keys, values=(30_000, 40_000)):
    utxos = make_utxos(list(values), keys.script_pubkey)
    selection = select_utxos(utxos, 60_000, 2, 2, keys.scheme)
    tx = build_transaction(
        selection, make_recipients(2, value=30_000), keys.script_pubkey
    ).transaction
    signer = create_signer(keys)
    return tx, signer, sign_transaction(tx, signer)


class TestFinalizeTransaction:
    def test_every_input_has_witness(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)

        decoded = final.decode()
        assert len(decoded.inputs) == 2
        for tx_input, sig in zip(decoded.inputs, signatures):
            assert tx_input.witness[0] == sig.signature
            assert tx_input.script_sig == b""

    def test_unsigned_transaction_untouched(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        finalize_transaction(tx, signatures, signer)
        assert not tx.has_witness

    def test_txid_matches_unsigned(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)

        assert final.txid == tx.txid
        assert final.wtxid != final.txid
        assert final.decode().txid == final.txid

    def test_round_trip_byte_identical(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)

        assert parse_transaction(final.raw).serialize() == final.raw
        assert bytes.fromhex(final.hex) == final.raw

    def test_witness_marker_present(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)
        assert final.raw[4:6] == b"\x00\x01"

    def test_vsize_within_estimate(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)

        estimate = estimate_vsize(len(tx.inputs), len(tx.outputs), keys.scheme)
        assert final.vsize <= estimate
        assert final.weight <= final.vsize * 4

    def test_signatures_still_verify_after_finalization(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        final = finalize_transaction(tx, signatures, signer)

        decoded = final.decode()
        for index, tx_input in enumerate(tx.inputs):
            decoded.inputs[index].value = tx_input.value
            decoded.inputs[index].script_pubkey = tx_input.script_pubkey
        for sig in signatures:
            assert signer.verify(sig.signature, signer.compute_sighash(decoded, sig.input_index))

    def test_from_transaction(self, keys):
        tx, _, _ = build_and_sign(keys)
        final = FinalTransaction.from_transaction(tx)
        assert final.raw == tx.serialize()
        assert final.vsize == tx.vsize


class TestFinalizeRejects:
    def test_missing_signature(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        with pytest.raises(FinalizationError, match="Input #1 .* has no signature"):
            finalize_transaction(tx, signatures[:1], signer)

    def test_duplicate_signature(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        with pytest.raises(FinalizationError, match="Duplicate signature"):
            finalize_transaction(tx, signatures + signatures[:1], signer)

    def test_signature_for_nonexistent_input(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        stray = dataclasses.replace(signatures[0], input_index=5)
        with pytest.raises(FinalizationError, match="nonexistent input #5"):
            finalize_transaction(tx, signatures + [stray], signer)

    def test_signatures_swapped_between_inputs(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        swapped = [
            dataclasses.replace(signatures[0], input_index=1),
            dataclasses.replace(signatures[1], input_index=0),
        ]
        with pytest.raises(FinalizationError, match="changed after input #0 was signed"):
            finalize_transaction(tx, swapped, signer)

    def test_previous_script_changed_after_signing(self, keys, p2wpkh_keys, p2tr_keys):
        tx, signer, signatures = build_and_sign(keys)
        other = p2tr_keys if keys.scheme is p2wpkh_keys.scheme else p2wpkh_keys
        tx.inputs[0].script_pubkey = other.script_pubkey

        with pytest.raises(FinalizationError, match="Previous output script for input #0"):
            finalize_transaction(tx, signatures, signer)

    def test_outputs_changed_after_signing(self, keys):
        tx, signer, signatures = build_and_sign(keys)
        tx.outputs[0].value -= 1

        with pytest.raises(FinalizationError, match="changed after input #0 was signed"):
            finalize_transaction(tx, signatures, signer)

    def test_signature_from_other_scheme(self, p2wpkh_keys, p2tr_keys):
        tx, signer, _ = build_and_sign(p2tr_keys)
        _, _, wrong = build_and_sign(p2wpkh_keys)

        with pytest.raises(FinalizationError, match="is p2wpkh, expected p2tr"):
            finalize_transaction(tx, wrong, signer)
