"""Typed payout provider (Paycrest) payloads."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from offramp.core.status import PayoutOrderStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PayoutRate(_CamelModel):
    """Conversion rate (fiat per token) and the fees declared with it."""

    rate: Decimal = Field(..., gt=0)
    sender_fee: Decimal = Decimal("0")
    transaction_fee: Decimal = Decimal("0")

    @classmethod
    def from_data(cls, data: Any) -> "PayoutRate":
        """Rates come back either as a bare number or as ``{rate, fee}``."""
        if isinstance(data, (str, int, float, Decimal)):
            return cls(rate=Decimal(str(data)))
        fee = data.get("fee") or {}
        return cls(
            rate=data["rate"],
            sender_fee=fee.get("sender", 0),
            transaction_fee=fee.get("transaction", 0),
        )


class Institution(_CamelModel):
    """A bank or mobile money institution supported for a currency."""

    name: str
    code: str
    type: Optional[str] = None


class VerifyAccountRequest(_CamelModel):
    institution: str = Field(..., min_length=1)
    account_identifier: str = Field(..., min_length=4, max_length=34)


class VerifiedAccount(_CamelModel):
    institution: str
    account_identifier: str
    account_name: str


class PayoutRecipient(_CamelModel):
    institution: str
    account_identifier: str
    account_name: str
    currency: str
    memo: str = "Off-ramp payout"


class CreateOrderRequest(_CamelModel):
    """Body of ``POST /sender/orders``."""

    amount: Decimal
    token: str
    rate: Decimal
    network: str
    recipient: PayoutRecipient
    return_address: str
    reference: str

    def as_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PayoutOrder(_CamelModel):
    """Order returned by the payout provider on creation."""

    id: str = Field(..., min_length=1)
    receive_address: str = Field(..., min_length=1)
    valid_until: Optional[datetime] = None
    sender_fee: Decimal = Decimal("0")
    transaction_fee: Decimal = Decimal("0")
    amount: Optional[Decimal] = None
    reference: Optional[str] = None
    status: PayoutOrderStatus = PayoutOrderStatus.PENDING

    @field_validator("valid_until", mode="before")
    @classmethod
    def empty_valid_until(cls, v: Any) -> Any:
        return v or None


class PayoutOrderState(_CamelModel):
    """Order status as returned by ``GET /sender/orders/{id}``."""

    id: str
    status: PayoutOrderStatus
    amount: Optional[Decimal] = None
    tx_hash: Optional[str] = None
    updated_at: Optional[str] = None
