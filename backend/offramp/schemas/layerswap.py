"""Typed bridge provider (LayerSwap) payloads."""

import json
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from offramp.core.status import SwapStatus


class ChainCall(BaseModel):
    """One source-chain contract call of a deposit action."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    contract_address: str = Field(..., alias="contractAddress")
    entrypoint: str
    calldata: List[str] = Field(default_factory=list)

    @field_validator("calldata", mode="before")
    @classmethod
    def stringify_calldata(cls, v: Any) -> List[str]:
        """Felts may arrive as ints or hex strings."""
        return [str(item) for item in (v or [])]

    def as_payload(self) -> Dict[str, Any]:
        return {
            "contractAddress": self.contract_address,
            "entrypoint": self.entrypoint,
            "calldata": list(self.calldata),
        }


class ActionNetwork(BaseModel):
    name: str
    chain_id: Optional[str] = None
    type: Optional[str] = None


class ActionToken(BaseModel):
    symbol: str
    contract: Optional[str] = None
    decimals: int


class DepositAction(BaseModel):
    """A chain call the user must make to fund the swap."""

    type: str = "transfer"
    to_address: Optional[str] = None
    amount: Optional[Decimal] = None
    amount_in_base_units: Optional[str] = None
    call_data: str = "[]"
    network: Optional[ActionNetwork] = None
    token: Optional[ActionToken] = None

    @field_validator("call_data", mode="before")
    @classmethod
    def normalize_call_data(cls, v: Any) -> str:
        if isinstance(v, (list, dict)):
            return json.dumps(v)
        return v

    @property
    def calls(self) -> List[ChainCall]:
        """Decode ``call_data`` into typed calls."""
        decoded = json.loads(self.call_data) if self.call_data else []
        if isinstance(decoded, dict):
            decoded = [decoded]
        return [ChainCall.model_validate(call) for call in decoded]


class SwapQuote(BaseModel):
    """Bridge quote. Amounts are in token units of the destination token."""

    receive_amount: Decimal
    min_receive_amount: Decimal
    blockchain_fee: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")
    total_fee: Decimal = Decimal("0")


class _SwapBase(BaseModel):
    id: str
    quote: Optional[SwapQuote] = None
    deposit_actions: List[DepositAction] = Field(default_factory=list)
    source_network: Optional[str] = None
    destination_network: Optional[str] = None
    destination_address: Optional[str] = None

    @property
    def swap_status(self) -> SwapStatus:
        return SwapStatus(self.status)  # type: ignore[attr-defined]


class AwaitingDepositSwap(_SwapBase):
    status: Literal["user_transfer_pending"]


class BridgingSwap(_SwapBase):
    status: Literal["ls_transfer_pending"]


class CompletedSwap(_SwapBase):
    status: Literal["completed"]


class ClosedSwap(_SwapBase):
    """Swap that ended without paying out."""

    status: Literal["failed", "cancelled", "expired"]


BridgeSwap = Annotated[
    Union[AwaitingDepositSwap, BridgingSwap, CompletedSwap, ClosedSwap],
    Field(discriminator="status"),
]

_bridge_swap_adapter: TypeAdapter = TypeAdapter(BridgeSwap)


def parse_swap_envelope(payload: Dict[str, Any]) -> BridgeSwap:
    """
    Build a typed swap from a provider response.

    Accepts both ``{data: {swap, quote, deposit_actions}}`` and the flat
    ``{data: {id, status, ...}}`` status shape.

    Raises:
        pydantic.ValidationError: Unknown status or malformed fields
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else payload
    if not isinstance(data, dict):
        raise ValueError("Swap payload is not an object")

    if isinstance(data.get("swap"), dict):
        swap = dict(data["swap"])
        if data.get("quote") is not None:
            swap.setdefault("quote", data["quote"])
        if data.get("deposit_actions") is not None:
            swap.setdefault("deposit_actions", data["deposit_actions"])
    else:
        swap = dict(data)

    return _bridge_swap_adapter.validate_python(swap)


class CreateSwapRequest(BaseModel):
    """Inbound request to open a bridge swap."""

    source_token: str = Field(..., min_length=1, max_length=16)
    destination_token: Optional[str] = Field(None, max_length=16)
    amount: Decimal = Field(..., gt=0)
    refuel: bool = True
