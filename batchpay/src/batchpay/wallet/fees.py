"""
Fee estimation for batch payment transactions.

Virtual size is modelled per signing scheme:

    vsize = ceil(base + inputs * per_input + outputs * per_output)

Base covers version, locktime, counters and the segwit marker/flag (10.5 vB).
P2WPKH inputs cost 68 vB (41 bytes non-witness + ~108 WU witness), P2TR key
path inputs cost 57.5 vB (41 bytes + 66 WU witness). Outputs are priced at
43 vB, the size of a P2TR output, so recipients of any standard type are
never under-priced.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from loguru import logger

from batchpay.errors import FeeRateUnavailableError, FetchError
from batchpay.models import SigningScheme

if TYPE_CHECKING:
    from batchpay.backends.base import BlockchainBackend
    from batchpay.config import BatchConfig


@dataclass(frozen=True)
class TxSizeParams:
    base: Decimal
    per_input: Decimal
    per_output: Decimal


TX_SIZE_PARAMS: dict[SigningScheme, TxSizeParams] = {
    SigningScheme.P2WPKH: TxSizeParams(Decimal("10.5"), Decimal("68"), Decimal("43")),
    SigningScheme.P2TR: TxSizeParams(Decimal("10.5"), Decimal("57.5"), Decimal("43")),
}


@dataclass(frozen=True)
class FeeQuote:
    rate: float  # sat/vB
    vsize: int
    fee: int  # sats


def _to_decimal(rate: float | int | Decimal) -> Decimal:
    # str() keeps 1.1 as 1.1 instead of its binary float expansion
    value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Fee rate must be a positive number, got {rate}")
    return value


def estimate_vsize(input_count: int, output_count: int, scheme: SigningScheme) -> int:
    if input_count < 0 or output_count < 0:
        raise ValueError("Input and output counts must be non-negative")
    params = TX_SIZE_PARAMS[SigningScheme(scheme)]
    size = params.base + input_count * params.per_input + output_count * params.per_output
    return math.ceil(size)


def estimate_fee(
    input_count: int,
    output_count: int,
    rate: float | int | Decimal,
    scheme: SigningScheme = SigningScheme.P2TR,
) -> int:
    """Absolute fee in satoshis: ceil(rate * estimated vsize)."""
    vsize = estimate_vsize(input_count, output_count, scheme)
    return math.ceil(_to_decimal(rate) * vsize)


def quote_fee(
    input_count: int,
    output_count: int,
    rate: float | int | Decimal,
    scheme: SigningScheme = SigningScheme.P2TR,
) -> FeeQuote:
    vsize = estimate_vsize(input_count, output_count, scheme)
    fee = math.ceil(_to_decimal(rate) * vsize)
    return FeeQuote(rate=float(rate), vsize=vsize, fee=fee)


async def resolve_fee_rate(config: BatchConfig, backend: BlockchainBackend) -> float:
    """
    Pick the fee rate for this run.

    Precedence: explicit configured rate, then the backend's recommended rate,
    then the configured fallback rate.

    Raises:
        FeeRateUnavailableError: If no rate can be obtained
    """
    if config.fee_rate is not None:
        logger.info(f"Using configured fee rate: {config.fee_rate} sat/vB")
        return config.fee_rate

    try:
        rate = await backend.get_recommended_fee_rate(config.fee_priority)
        _to_decimal(rate)
        logger.info(f"Using recommended fee rate ({config.fee_priority}): {rate} sat/vB")
        return rate
    except (FetchError, ValueError) as e:
        if config.fallback_fee_rate is None:
            raise FeeRateUnavailableError(
                f"Could not fetch a recommended fee rate and no fallback is configured: {e}"
            ) from e
        logger.warning(
            f"Failed to fetch recommended fee rate ({e}), "
            f"using fallback: {config.fallback_fee_rate} sat/vB"
        )
        return config.fallback_fee_rate
