"""Pydantic schemas package."""

from offramp.schemas.offramp import OffRampRequest, OffRampResult, SagaView
from offramp.schemas.layerswap import (
    BridgeSwap,
    AwaitingDepositSwap,
    BridgingSwap,
    CompletedSwap,
    ClosedSwap,
    ChainCall,
    DepositAction,
    SwapQuote,
    CreateSwapRequest,
    parse_swap_envelope,
)
from offramp.schemas.paycrest import (
    PayoutRate,
    Institution,
    VerifyAccountRequest,
    VerifiedAccount,
    PayoutRecipient,
    CreateOrderRequest,
    PayoutOrder,
    PayoutOrderState,
)
from offramp.schemas.webhook import WebhookEvent, WebhookAck

__all__ = [
    # Off-ramp schemas
    "OffRampRequest",
    "OffRampResult",
    "SagaView",
    # Bridge schemas
    "BridgeSwap",
    "AwaitingDepositSwap",
    "BridgingSwap",
    "CompletedSwap",
    "ClosedSwap",
    "ChainCall",
    "DepositAction",
    "SwapQuote",
    "CreateSwapRequest",
    "parse_swap_envelope",
    # Payout schemas
    "PayoutRate",
    "Institution",
    "VerifyAccountRequest",
    "VerifiedAccount",
    "PayoutRecipient",
    "CreateOrderRequest",
    "PayoutOrder",
    "PayoutOrderState",
    # Webhook schemas
    "WebhookEvent",
    "WebhookAck",
]
