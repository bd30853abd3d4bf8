"""Payout provider webhook schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(BaseModel):
    """Status event pushed by the payout provider.

    ``status`` stays a plain string: unknown statuses are acknowledged without
    changing state, so they must not fail parsing.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: str = Field(..., alias="orderId", min_length=1)
    status: str = Field(..., min_length=1)
    timestamp: Optional[str] = None
    signature: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
