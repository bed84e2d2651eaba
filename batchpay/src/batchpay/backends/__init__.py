"""
Blockchain backend implementations.

Available backends:
- MempoolBackend: Mempool.space / Esplora REST API (third-party, no setup required)
- BitcoinCoreBackend: Full node via Bitcoin Core RPC (no wallet, uses scantxoutset)
"""

from batchpay.backends.base import FEE_PRIORITIES, BlockchainBackend
from batchpay.backends.bitcoin_core import BitcoinCoreBackend
from batchpay.backends.mempool import MempoolBackend

__all__ = [
    "BlockchainBackend",
    "BitcoinCoreBackend",
    "FEE_PRIORITIES",
    "MempoolBackend",
]
