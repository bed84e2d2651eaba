"""
Mempool.space / Esplora REST API backend.

Third-party block explorer, no node required. Endpoints used:
- GET  /address/{address}/utxo
- GET  /tx/{txid}
- GET  /v1/fees/recommended
- POST /tx
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from batchpay.backends.base import FEE_PRIORITIES, BlockchainBackend
from batchpay.constants import MEMPOOL_API_URLS
from batchpay.errors import BroadcastError, FetchError
from batchpay.models import UTXO, NetworkType

DEFAULT_HTTP_TIMEOUT = 30.0


class MempoolBackend(BlockchainBackend):
    def __init__(
        self,
        api_url: str = "",
        network: NetworkType | str = "mainnet",
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize mempool backend.

        Args:
            api_url: Base API URL; derived from network when empty
            network: Bitcoin network (mainnet, testnet, signet, regtest)
            timeout: HTTP timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.network = NetworkType(network)
        self.api_url = (api_url or MEMPOOL_API_URLS[self.network.value]).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        content: str | None = None,
        expect_json: bool = True,
    ) -> Any:
        """Make an API call to the explorer."""
        url = f"{self.api_url}/{endpoint}"

        try:
            if method == "GET":
                response = await self.client.get(url)
            elif method == "POST":
                response = await self.client.post(
                    url, content=content, headers={"Content-Type": "text/plain"}
                )
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json() if expect_json else response.text.strip()

        except httpx.HTTPError as e:
            logger.error(f"Mempool API call failed: {endpoint} - {e}")
            raise

    async def get_utxos(self, address: str) -> list[UTXO]:
        try:
            data = await self._api_call("GET", f"address/{address}/utxo")
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to fetch UTXOs for {address}: {e}") from e

        if not isinstance(data, list):
            raise FetchError(f"Unexpected UTXO response for {address}: {data!r}")

        utxos: list[UTXO] = []
        try:
            for item in data:
                utxos.append(
                    UTXO(txid=item["txid"], vout=int(item["vout"]), value=int(item["value"]))
                )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed UTXO data for {address}: {e}") from e

        logger.info(f"Fetched {len(utxos)} UTXO(s) for {address}")
        return utxos

    async def get_output_script(self, txid: str, vout: int) -> bytes:
        try:
            tx_data = await self._api_call("GET", f"tx/{txid}")
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to fetch transaction {txid}: {e}") from e

        try:
            outputs = tx_data["vout"]
            if not 0 <= vout < len(outputs):
                raise FetchError(f"Output {txid}:{vout} does not exist")
            script_hex = outputs[vout]["scriptpubkey"]
            return bytes.fromhex(script_hex)
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Could not read scriptPubKey of {txid}:{vout}: {e}") from e

    async def get_recommended_fee_rate(self, priority: str = "halfHourFee") -> float:
        if priority not in FEE_PRIORITIES:
            raise ValueError(f"Unknown fee priority: {priority}")

        try:
            fees = await self._api_call("GET", "v1/fees/recommended")
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to fetch recommended fees: {e}") from e

        rate = None
        if isinstance(fees, dict):
            rate = fees.get(priority) or fees.get("fastestFee")
        if not rate:
            raise FetchError(f"No usable fee rate in response: {fees!r}")

        logger.debug(f"Recommended fees: {fees}")
        return float(rate)

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._api_call("POST", "tx", content=tx_hex, expect_json=False)
        except httpx.HTTPStatusError as e:
            # The explorer returns the node's rejection reason as the response body
            reason = e.response.text.strip() or str(e)
            raise BroadcastError(reason) from e
        except httpx.HTTPError as e:
            raise BroadcastError(str(e)) from e

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()
