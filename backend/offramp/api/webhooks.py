"""Payout provider webhook endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from offramp.api.deps import get_reconciler
from offramp.schemas.webhook import WebhookAck
from offramp.services.webhook_reconciler import WebhookReconciler

router = APIRouter()


@router.post("/paycrest", response_model=WebhookAck)
async def paycrest_webhook(
    request: Request,
    x_paycrest_signature: Optional[str] = Header(None),
    reconciler: WebhookReconciler = Depends(get_reconciler)
):
    """
    Receive a payout order status event.

    The signature is checked over the raw body, so the body is read as bytes
    and only parsed after verification. Any signature-valid event is
    acknowledged, whether or not it changed the recorded status.
    """
    raw_body = await request.body()
    return await reconciler.handle(raw_body, x_paycrest_signature)
