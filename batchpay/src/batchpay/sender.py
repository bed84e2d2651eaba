"""
Batch sender: runs one payment from UTXO fetch to broadcast.

    fetch -> select -> bind previous scripts -> build -> sign -> finalize -> broadcast

prepare() returns a fully signed transaction or raises; broadcast() only accepts
the result of prepare(), so nothing partially signed can reach the network.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from batchpay.backends.base import BlockchainBackend
from batchpay.config import BatchConfig
from batchpay.errors import DeadlineExceededError, ScriptMismatchError
from batchpay.models import UTXO, RecipientOutput
from batchpay.wallet.fees import resolve_fee_rate
from batchpay.wallet.finalize import FinalTransaction, finalize_transaction
from batchpay.wallet.keys import KeyMaterial, load_key_material
from batchpay.wallet.selection import CoinSelection, select_utxos
from batchpay.wallet.signing import InputSigner, create_signer, sign_transaction
from batchpay.wallet.transaction import build_transaction


@dataclass(frozen=True)
class PreparedBatch:
    """Signed batch transaction plus the figures shown to the operator."""

    final: FinalTransaction
    funding_address: str
    recipients: list[RecipientOutput]
    amount_sats: int
    fee_rate: float
    fee: int
    total_input: int
    total_payout: int
    change_value: int
    input_count: int

    @property
    def has_change(self) -> bool:
        return self.change_value > 0

    @property
    def effective_fee_rate(self) -> float:
        return self.fee / self.final.vsize


class BatchSender:
    def __init__(
        self,
        config: BatchConfig,
        backend: BlockchainBackend,
        recipients: list[RecipientOutput],
        keys: KeyMaterial | None = None,
        signer: InputSigner | None = None,
    ):
        if not recipients:
            raise ValueError("Recipient list is empty")

        self.config = config
        self.backend = backend
        self.recipients = recipients
        self._keys: KeyMaterial | None = keys or load_key_material(
            config.private_key.get_secret_value(), config.network, config.scheme
        )
        self._signer = signer

    @property
    def keys(self) -> KeyMaterial:
        if self._keys is None:
            raise RuntimeError("Batch sender is closed")
        return self._keys

    @property
    def funding_address(self) -> str:
        return self.keys.address

    async def prepare(self, deadline: float | None = None) -> PreparedBatch:
        """
        Build and sign the batch transaction.

        Args:
            deadline: Optional time limit in seconds for the whole preparation

        Raises:
            DeadlineExceededError: If the deadline expires before signing completes
        """
        if deadline is None:
            return await self._prepare()

        try:
            async with asyncio.timeout(deadline):
                return await self._prepare()
        except TimeoutError as e:
            raise DeadlineExceededError(
                f"Batch preparation did not finish within {deadline}s, nothing was signed"
            ) from e

    async def _prepare(self) -> PreparedBatch:
        keys = self.keys
        total_payout = self.config.amount_sats * len(self.recipients)
        logger.info(
            f"Preparing batch of {len(self.recipients)} payment(s) of "
            f"{self.config.amount_sats} sats from {keys.address}"
        )

        fee_rate = await resolve_fee_rate(self.config, self.backend)
        utxos = await self.backend.get_utxos(keys.address)

        selection = select_utxos(
            utxos,
            total_payout=total_payout,
            recipient_count=len(self.recipients),
            fee_rate=fee_rate,
            scheme=keys.scheme,
            order=self.config.selection_order,
        )
        selection = await self.bind_previous_outputs(selection)

        unsigned = build_transaction(
            selection,
            self.recipients,
            funding_script=keys.script_pubkey,
            network=keys.network,
            dust_threshold=self.config.dust_threshold,
        )

        signer = self._signer or create_signer(keys)
        signatures = sign_transaction(unsigned.transaction, signer)
        final = finalize_transaction(unsigned.transaction, signatures, signer)

        return PreparedBatch(
            final=final,
            funding_address=keys.address,
            recipients=list(self.recipients),
            amount_sats=self.config.amount_sats,
            fee_rate=fee_rate,
            fee=unsigned.fee,
            total_input=unsigned.total_input,
            total_payout=unsigned.total_payout,
            change_value=unsigned.change_value,
            input_count=len(unsigned.transaction.inputs),
        )

    async def bind_previous_outputs(self, selection: CoinSelection) -> CoinSelection:
        """
        Look up the on-chain script of every selected UTXO and check it is ours.

        Raises:
            ScriptMismatchError: If any script differs from the funding script
        """
        expected = self.keys.script_pubkey
        bound: list[UTXO] = []

        for utxo in selection.utxos:
            script = await self.backend.get_output_script(utxo.txid, utxo.vout)
            logger.debug(f"UTXO {utxo.outpoint}: {utxo.value} sats, script {script.hex()}")

            for candidate in (script, utxo.script_pubkey):
                if candidate and candidate != expected:
                    logger.error(
                        f"UTXO {utxo.outpoint} does not belong to {self.keys.address}: "
                        "the service may have returned data for another address"
                    )
                    raise ScriptMismatchError(utxo.txid, utxo.vout, expected, candidate)
            if not script:
                raise ScriptMismatchError(utxo.txid, utxo.vout, expected, script)

            bound.append(utxo.with_script(script))

        return CoinSelection(
            utxos=bound,
            total_value=selection.total_value,
            total_payout=selection.total_payout,
            quote=selection.quote,
        )

    async def broadcast(self, prepared: PreparedBatch) -> str:
        """Broadcast a prepared batch, returning the txid reported by the backend."""
        txid = await self.backend.broadcast_transaction(prepared.final.hex)
        if txid != prepared.final.txid:
            logger.warning(f"Backend reported txid {txid}, expected {prepared.final.txid}")
        return txid

    def close(self) -> None:
        """Drop key material; the sender cannot be used afterwards."""
        self._keys = None
        self._signer = None
