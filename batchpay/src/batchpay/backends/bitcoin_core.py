"""
Bitcoin Core RPC blockchain backend.
Uses RPC calls but NOT wallet functionality (no BDB dependency).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from batchpay.backends.base import FEE_PRIORITIES, BlockchainBackend
from batchpay.constants import SATS_PER_BTC
from batchpay.errors import BroadcastError, FetchError
from batchpay.models import UTXO

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Timeout for scantxoutset calls - mainnet scans can take 90+ seconds
SCAN_RPC_TIMEOUT = 300.0  # 5 minutes

# Confirmation targets standing in for the explorer's fee priorities
FEE_PRIORITY_TARGETS = {
    "fastestFee": 1,
    "halfHourFee": 3,
    "hourFee": 6,
    "economyFee": 144,
    "minimumFee": 1008,
}


def btc_amount_to_sats(amount: Any) -> int:
    return int(Decimal(str(amount)) * SATS_PER_BTC)


class BitcoinCoreBackend(BlockchainBackend):
    """
    Blockchain backend using Bitcoin Core RPC.
    Does NOT use Bitcoin Core wallet (avoids BDB issues).
    Uses scantxoutset and other non-wallet RPC methods.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8332",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        scan_timeout: float = SCAN_RPC_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.scan_timeout = scan_timeout
        # Client for regular RPC calls
        self.client = client or httpx.AsyncClient(
            timeout=DEFAULT_RPC_TIMEOUT, auth=(rpc_user, rpc_password)
        )
        self._request_id = 0

    async def _rpc_call(
        self,
        method: str,
        params: list | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Make an RPC call to Bitcoin Core.

        Args:
            method: RPC method name
            params: Method parameters
            timeout: Optional per-call timeout override

        Returns:
            RPC result

        Raises:
            ValueError: On RPC errors
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            if timeout is None:
                response = await self.client.post(self.rpc_url, json=payload)
            else:
                response = await self.client.post(self.rpc_url, json=payload, timeout=timeout)
            # Bitcoin Core answers RPC errors with HTTP 500 and a JSON body
            if response.status_code != 500:
                response.raise_for_status()
            data = response.json()

            if "error" in data and data["error"]:
                error_info = data["error"]
                error_code = error_info.get("code", "unknown")
                error_msg = error_info.get("message", str(error_info))
                raise ValueError(f"RPC error {error_code}: {error_msg}")

            return data.get("result")

        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

    async def get_utxos(self, address: str) -> list[UTXO]:
        try:
            result = await self._rpc_call(
                "scantxoutset", ["start", [f"addr({address})"]], timeout=self.scan_timeout
            )
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to scan UTXOs for {address}: {e}") from e

        if not result or not result.get("success", False):
            raise FetchError(f"UTXO scan for {address} did not complete")

        utxos: list[UTXO] = []
        try:
            for utxo_data in result.get("unspents", []):
                utxos.append(
                    UTXO(
                        txid=utxo_data["txid"],
                        vout=utxo_data["vout"],
                        value=btc_amount_to_sats(utxo_data["amount"]),
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed scantxoutset result for {address}: {e}") from e

        logger.info(f"Scanned {address}: found {len(utxos)} UTXO(s)")
        return utxos

    async def get_output_script(self, txid: str, vout: int) -> bytes:
        try:
            # gettxout covers confirmed and mempool outputs without needing txindex
            result = await self._rpc_call("gettxout", [txid, vout, True])
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to look up output {txid}:{vout}: {e}") from e

        if result is None:
            raise FetchError(f"Output {txid}:{vout} not found (spent or doesn't exist)")

        try:
            return bytes.fromhex(result["scriptPubKey"]["hex"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Could not read scriptPubKey of {txid}:{vout}: {e}") from e

    async def get_recommended_fee_rate(self, priority: str = "halfHourFee") -> float:
        if priority not in FEE_PRIORITIES:
            raise ValueError(f"Unknown fee priority: {priority}")

        target_blocks = FEE_PRIORITY_TARGETS[priority]
        try:
            result = await self._rpc_call("estimatesmartfee", [target_blocks])
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to estimate fee: {e}") from e

        if not result or "feerate" not in result:
            raise FetchError(f"Fee estimation unavailable: {result!r}")

        # BTC/kvB -> sat/vB
        sat_per_vbyte = float(Decimal(str(result["feerate"])) * SATS_PER_BTC / 1000)
        logger.debug(f"Estimated fee for {target_blocks} blocks: {sat_per_vbyte} sat/vB")
        return sat_per_vbyte

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastError(str(e)) from e

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()
