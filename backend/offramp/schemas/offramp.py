"""Off-ramp request and response schemas."""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_STARKNET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")

SUPPORTED_TOKENS = ("USDC", "USDT", "DAI", "ETH")


class OffRampRequest(BaseModel):
    """Request to cash a bridged stablecoin balance out to a bank account.

    Immutable once accepted.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)

    swap_id: str = Field(..., alias="swapId", min_length=1, max_length=64)
    token: Literal["USDC", "USDT", "DAI", "ETH"]
    amount: Decimal = Field(..., gt=0, description="Source token amount, human-readable units")
    fiat_currency: str = Field(..., alias="fiatCurrency", min_length=3, max_length=3)
    bank_code: str = Field(..., alias="bankCode", min_length=1, max_length=32)
    account_number: str = Field(..., alias="accountNumber", min_length=4, max_length=34)
    account_name: str = Field(..., alias="accountName", min_length=1, max_length=128)
    user_address: str = Field(
        ...,
        validation_alias=AliasChoices("userAddress", "userStarknetAddress", "user_address"),
        serialization_alias="userAddress",
        description="Source chain account that funds the bridge deposit"
    )
    destination_fiat_amount: Decimal = Field(
        ...,
        alias="destinationFiatAmount",
        ge=0,
        description="Fiat amount previewed to the user; not binding"
    )

    @field_validator("fiat_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("fiatCurrency must be an ISO 4217 code")
        return v.upper()

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str) -> str:
        if not v.isalnum():
            raise ValueError("accountNumber must be alphanumeric")
        return v

    @field_validator("user_address")
    @classmethod
    def validate_user_address(cls, v: str) -> str:
        v = v.strip()
        if not _STARKNET_ADDRESS_RE.match(v):
            raise ValueError("userAddress must be a 0x-prefixed hex address")
        return v.lower()

    def masked(self) -> dict:
        """Snapshot for persistence and logs with the account number masked."""
        data = self.model_dump(mode="json", by_alias=True)
        data["accountNumber"] = f"****{self.account_number[-4:]}"
        return data


class OffRampResult(BaseModel):
    """Outcome of a saga that reached the payout wait.

    ``failed`` means the payout provider refunded or expired the order after
    settlement; ``pending`` means no terminal payout status was seen in time.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success", "pending", "failed"]
    source_chain_tx_hash: Optional[str] = Field(None, alias="sourceChainTxHash")
    settlement_tx_hash: str = Field(..., alias="settlementTxHash")
    payout_order_id: str = Field(..., alias="paycrestOrderId")
    final_status: str = Field(..., alias="finalStatus")
    fiat_amount: Optional[Decimal] = Field(None, alias="fiatAmount")

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SagaView(BaseModel):
    """Persisted saga state, for resumption and support."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    swap_id: str = Field(..., alias="swapId")
    step: str
    outcome: str
    source_tx_hash: Optional[str] = Field(None, alias="sourceChainTxHash")
    source_transfer_submitted: bool = Field(False, alias="sourceTransferSubmitted")
    bridge_status: Optional[str] = Field(None, alias="bridgeStatus")
    fiat_amount: Optional[Decimal] = Field(None, alias="fiatAmount")
    payout_order_id: Optional[str] = Field(None, alias="paycrestOrderId")
    settlement_tx_hash: Optional[str] = Field(None, alias="settlementTxHash")
    final_status: Optional[str] = Field(None, alias="finalStatus")
    error_code: Optional[str] = Field(None, alias="errorCode")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
