"""Payout provider lookups: institutions, account checks and rate previews."""

from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Path

from offramp.api.deps import get_paycrest
from offramp.schemas.paycrest import Institution, PayoutRate, VerifiedAccount, VerifyAccountRequest
from offramp.services.paycrest_service import PaycrestService

router = APIRouter()


@router.get("/institutions/{currency}", response_model=List[Institution])
async def list_institutions(
    currency: str = Path(..., min_length=3, max_length=3),
    paycrest: PaycrestService = Depends(get_paycrest)
):
    """List banks and mobile money providers for a fiat currency."""
    return await paycrest.get_institutions(currency.upper())


@router.post("/verify-account", response_model=VerifiedAccount, response_model_by_alias=True)
async def verify_account(
    request: VerifyAccountRequest,
    paycrest: PaycrestService = Depends(get_paycrest)
):
    """Resolve the holder name of a bank account."""
    return await paycrest.verify_account(request.institution, request.account_identifier)


@router.get("/rates/{token}/{amount}/{currency}", response_model=PayoutRate, response_model_by_alias=True)
async def preview_rate(
    token: str,
    amount: Decimal = Path(..., gt=0),
    currency: str = Path(..., min_length=3, max_length=3),
    paycrest: PaycrestService = Depends(get_paycrest)
):
    """
    Non-binding rate preview.

    The off-ramp prices the payout again after the bridge completes, from the
    bridge's minimum receive amount; this preview is never reused.
    """
    return await paycrest.get_rate(token.upper(), amount, currency.upper())
