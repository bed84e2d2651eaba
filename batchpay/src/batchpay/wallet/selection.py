"""
Greedy UTXO selection against a payout plus fee target.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from loguru import logger

from batchpay.errors import InsufficientFundsError
from batchpay.models import UTXO, SigningScheme
from batchpay.wallet.fees import FeeQuote, quote_fee


class SelectionOrder(str, Enum):
    AS_RECEIVED = "as-received"
    LARGEST_FIRST = "largest-first"
    SMALLEST_FIRST = "smallest-first"


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[UTXO] = field(default_factory=list)
    total_value: int = 0
    total_payout: int = 0
    quote: FeeQuote | None = None

    @property
    def fee(self) -> int:
        return self.quote.fee if self.quote else 0

    @property
    def change_value(self) -> int:
        return self.total_value - self.total_payout - self.fee

    def add(self, utxo: UTXO) -> None:
        self.utxos.append(utxo)
        self.total_value += utxo.value


def order_utxos(utxos: Sequence[UTXO], order: SelectionOrder) -> list[UTXO]:
    if order is SelectionOrder.LARGEST_FIRST:
        return sorted(utxos, key=lambda u: u.value, reverse=True)
    if order is SelectionOrder.SMALLEST_FIRST:
        return sorted(utxos, key=lambda u: u.value)
    return list(utxos)


def select_utxos(
    utxos: Sequence[UTXO],
    total_payout: int,
    recipient_count: int,
    fee_rate: float | Decimal,
    scheme: SigningScheme,
    order: SelectionOrder = SelectionOrder.AS_RECEIVED,
) -> CoinSelection:
    """
    Accumulate UTXOs until they cover the payout plus the fee for the inputs so far.

    The fee is re-estimated after every addition, since each input adds to the
    transaction size. Output count assumes a change output will be created.

    Raises:
        InsufficientFundsError: If all candidates together do not cover the target
    """
    if total_payout <= 0:
        raise ValueError(f"Total payout must be positive, got {total_payout}")
    if recipient_count <= 0:
        raise ValueError("At least one recipient is required")

    output_count = recipient_count + 1
    selection = CoinSelection(total_payout=total_payout)

    for utxo in order_utxos(utxos, SelectionOrder(order)):
        selection.add(utxo)
        selection.quote = quote_fee(len(selection.utxos), output_count, fee_rate, scheme)
        required = total_payout + selection.fee
        logger.debug(
            f"Selected {len(selection.utxos)} UTXO(s), total input: {selection.total_value} sats, "
            f"estimated fee: {selection.fee} sats, required: {required} sats"
        )
        if selection.total_value >= required:
            logger.info(
                f"Selected {len(selection.utxos)} of {len(utxos)} UTXO(s): "
                f"{selection.total_value} sats covers {total_payout} payout + {selection.fee} fee"
            )
            return selection

    # Nothing selected still needs at least one input's worth of fee
    quote = selection.quote or quote_fee(1, output_count, fee_rate, scheme)
    raise InsufficientFundsError(
        required=total_payout + quote.fee,
        available=selection.total_value,
    )
