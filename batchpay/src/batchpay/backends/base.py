"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from batchpay.models import UTXO

FEE_PRIORITIES = ("fastestFee", "halfHourFee", "hourFee", "economyFee", "minimumFee")


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.

    Everything the batch sender needs from the outside world: UTXO lookup,
    previous-output scripts, fee rates and broadcast. Implementations never
    retry; a failed call aborts the run.
    """

    @abstractmethod
    async def get_utxos(self, address: str) -> list[UTXO]:
        """Get UTXOs for an address, in the order the service returns them.

        Raises:
            FetchError: On network or parse failure
        """

    @abstractmethod
    async def get_output_script(self, txid: str, vout: int) -> bytes:
        """Get the scriptPubKey of output txid:vout.

        Raises:
            FetchError: On network or parse failure, or if the output does not exist
        """

    @abstractmethod
    async def get_recommended_fee_rate(self, priority: str = "halfHourFee") -> float:
        """Recommended fee rate in sat/vbyte.

        Raises:
            FetchError: If no rate could be fetched
        """

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid.

        Raises:
            BroadcastError: With the service's rejection reason
        """

    async def close(self) -> None:
        """Close backend connection"""
        pass
