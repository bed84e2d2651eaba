"""
batchpay - Batch Bitcoin payments from a single-key wallet

Pays a fixed amount to many recipients in one P2WPKH or P2TR key-path
transaction, funded from the UTXOs of one address.
"""

__version__ = "0.1.0"

from batchpay.errors import (
    ArithmeticFault,
    BatchPayError,
    BroadcastError,
    DeadlineExceededError,
    FeeRateUnavailableError,
    FetchError,
    FinalizationError,
    InsufficientFundsError,
    InvalidAddressError,
    InvalidKeyError,
    ScriptMismatchError,
    SignatureInvalidError,
)
from batchpay.models import UTXO, NetworkType, RecipientOutput, SigningScheme

__all__ = [
    "__version__",
    # Errors
    "ArithmeticFault",
    "BatchPayError",
    "BroadcastError",
    "DeadlineExceededError",
    "FeeRateUnavailableError",
    "FetchError",
    "FinalizationError",
    "InsufficientFundsError",
    "InvalidAddressError",
    "InvalidKeyError",
    "ScriptMismatchError",
    "SignatureInvalidError",
    # Models
    "NetworkType",
    "RecipientOutput",
    "SigningScheme",
    "UTXO",
]
