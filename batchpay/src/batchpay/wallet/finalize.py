"""
Finalization: merge verified signatures into the transaction and serialize it.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from batchpay.errors import FinalizationError
from batchpay.wallet.signing import InputSignature, InputSigner
from batchpay.wallet.transaction import Transaction, parse_transaction


@dataclass(frozen=True)
class FinalTransaction:
    """Fully signed transaction, ready for broadcast."""

    raw: bytes
    txid: str
    wtxid: str
    weight: int
    vsize: int

    @property
    def hex(self) -> str:
        return self.raw.hex()

    @classmethod
    def from_transaction(cls, tx: Transaction) -> FinalTransaction:
        return cls(
            raw=tx.serialize(),
            txid=tx.txid,
            wtxid=tx.wtxid,
            weight=tx.weight,
            vsize=tx.vsize,
        )

    def decode(self) -> Transaction:
        return parse_transaction(self.raw)


def finalize_transaction(
    tx: Transaction,
    signatures: Sequence[InputSignature],
    signer: InputSigner,
) -> FinalTransaction:
    """
    Attach one signature per input and produce the final wire encoding.

    The unsigned transaction passed in is left untouched.

    Raises:
        FinalizationError: If an input is unsigned, signed twice, or its previous
            output script or sighash differs from what the signature committed to
    """
    by_index: dict[int, InputSignature] = {}
    for sig in signatures:
        if sig.input_index in by_index:
            raise FinalizationError(f"Duplicate signature for input #{sig.input_index}")
        if not 0 <= sig.input_index < len(tx.inputs):
            raise FinalizationError(f"Signature for nonexistent input #{sig.input_index}")
        if sig.scheme is not signer.scheme:
            raise FinalizationError(
                f"Signature for input #{sig.input_index} is {sig.scheme.value}, "
                f"expected {signer.scheme.value}"
            )
        by_index[sig.input_index] = sig

    signed = copy.deepcopy(tx)

    for index, tx_input in enumerate(signed.inputs):
        sig = by_index.get(index)
        if sig is None:
            raise FinalizationError(
                f"Input #{index} ({tx_input.txid}:{tx_input.vout}) has no signature"
            )
        if sig.script_pubkey != tx_input.script_pubkey:
            raise FinalizationError(
                f"Previous output script for input #{index} ({tx_input.txid}:{tx_input.vout}) "
                f"changed after signing: {sig.script_pubkey.hex()} "
                f"!= {tx_input.script_pubkey.hex()}"
            )
        if signer.compute_sighash(tx, index) != sig.sighash:
            raise FinalizationError(f"Transaction changed after input #{index} was signed")
        signer.attach_to_input(tx_input, sig)

    final = FinalTransaction.from_transaction(signed)
    logger.info(f"Finalized transaction {final.txid} ({final.vsize} vB, {len(final.raw)} bytes)")
    return final
