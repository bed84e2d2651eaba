"""
Exception hierarchy for batch payments.

Every error aborts the current run. Messages carry enough context (amounts,
outpoints, addresses) to diagnose a failure without re-running.
"""

from __future__ import annotations


class BatchPayError(Exception):
    pass


class InvalidKeyError(BatchPayError):
    """Serialized private key is malformed, out of range or for another network."""


class InvalidAddressError(BatchPayError):
    pass


class FetchError(BatchPayError):
    """A collaborator lookup (UTXOs, scripts, fee rates) failed."""


class FeeRateUnavailableError(FetchError):
    pass


class InsufficientFundsError(BatchPayError):
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient funds: need {required} sats, have {available} sats "
            f"(short by {self.shortfall} sats)"
        )


class ScriptMismatchError(BatchPayError):
    """On-chain script of a UTXO differs from the funding script."""

    def __init__(self, txid: str, vout: int, expected: bytes, actual: bytes):
        self.txid = txid
        self.vout = vout
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"ScriptPubKey mismatch for UTXO {txid}:{vout}: "
            f"expected {expected.hex()}, got {actual.hex() or '<empty>'}"
        )


class SignatureInvalidError(BatchPayError):
    def __init__(self, input_index: int, detail: str = ""):
        self.input_index = input_index
        message = f"Signature for input #{input_index} failed verification"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ArithmeticFault(BatchPayError):
    """Internal invariant violation, e.g. negative change after selection."""


class FinalizationError(BatchPayError):
    pass


class BroadcastError(BatchPayError):
    """The network rejected the transaction. The signed transaction stays valid."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Broadcast failed: {reason}")


class DeadlineExceededError(BatchPayError):
    pass
