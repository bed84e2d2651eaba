"""
Configuration for batch payments.

The JSON config file accepts both the snake_case field names and the camelCase
keys of the original config format (privateKey, sendAmountBTC, feeRate, ...).
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from batchpay.constants import SATS_PER_BTC, STANDARD_DUST_LIMIT
from batchpay.errors import InvalidAddressError
from batchpay.models import NetworkType, RecipientOutput, SigningScheme
from batchpay.wallet.address import address_to_scriptpubkey
from batchpay.wallet.selection import SelectionOrder

FeePriority = Literal["fastestFee", "halfHourFee", "hourFee", "economyFee", "minimumFee"]


class BackendType(str, Enum):
    MEMPOOL = "mempool"
    BITCOIN_CORE = "bitcoin_core"


def btc_to_sats(amount_btc: Decimal) -> int:
    """Convert BTC to satoshis, dropping fractions of a satoshi."""
    return int((amount_btc * SATS_PER_BTC).to_integral_value(rounding=ROUND_FLOOR))


class BatchConfig(BaseModel):
    """Immutable settings for one batch payment run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    private_key: SecretStr = Field(..., alias="privateKey", description="WIF private key")
    network: NetworkType = NetworkType.MAINNET
    scheme: SigningScheme = SigningScheme.P2TR

    # Payout
    send_amount_btc: Decimal = Field(
        default=Decimal("0.0001"), gt=0, alias="sendAmountBTC", description="Amount per recipient"
    )

    # Fee settings
    fee_rate: float | None = Field(
        default=None, gt=0, alias="feeRate", description="Explicit fee rate in sat/vB"
    )
    fallback_fee_rate: float | None = Field(
        default=None,
        gt=0,
        alias="fallbackFeeRate",
        description="Used when the recommended rate cannot be fetched",
    )
    fee_priority: FeePriority = Field(default="halfHourFee", alias="feePriority")

    # Selection and change
    selection_order: SelectionOrder = Field(
        default=SelectionOrder.AS_RECEIVED, alias="selectionOrder"
    )
    dust_threshold: int = Field(default=STANDARD_DUST_LIMIT, ge=0, alias="dustThreshold")

    # Backend settings
    backend_type: BackendType = Field(default=BackendType.MEMPOOL, alias="backendType")
    api_url: str = Field(default="", alias="apiUrl", description="Explorer API base URL")
    rpc_url: str = Field(default="http://127.0.0.1:8332", alias="rpcUrl")
    rpc_user: str = Field(default="", alias="rpcUser")
    rpc_password: SecretStr = Field(default=SecretStr(""), alias="rpcPassword")

    @field_validator("send_amount_btc")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if btc_to_sats(v) < 1:
            raise ValueError("Amount per recipient must be at least 1 satoshi")
        return v

    @property
    def amount_sats(self) -> int:
        return btc_to_sats(self.send_amount_btc)

    def with_overrides(self, **overrides: Any) -> BatchConfig:
        """Return a validated copy with the given fields replaced (None values are ignored)."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return BatchConfig.model_validate(data)


def load_config(path: Path) -> BatchConfig:
    """Load and validate a JSON config file."""
    return BatchConfig.model_validate_json(path.read_text(encoding="utf-8"))


def parse_recipients(
    lines: list[str],
    amount_sats: int,
    network: NetworkType | str = "mainnet",
) -> list[RecipientOutput]:
    """
    Parse one recipient address per line.

    Blank lines and lines starting with '#' are skipped.

    Raises:
        InvalidAddressError: With the offending line number
    """
    recipients: list[RecipientOutput] = []
    for line_no, line in enumerate(lines, 1):
        address = line.strip()
        if not address or address.startswith("#"):
            continue
        try:
            address_to_scriptpubkey(address, network)
        except InvalidAddressError as e:
            raise InvalidAddressError(f"Line {line_no}: {e}") from e
        recipients.append(RecipientOutput(address=address, value=amount_sats))
    return recipients


def load_recipients(
    path: Path,
    amount_sats: int,
    network: NetworkType | str = "mainnet",
) -> list[RecipientOutput]:
    return parse_recipients(path.read_text(encoding="utf-8").splitlines(), amount_sats, network)
