"""Bridge swap endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from offramp.api.deps import get_layerswap, get_settlement_address
from offramp.core.errors import ConfigurationError
from offramp.schemas.layerswap import CreateSwapRequest
from offramp.services.layerswap_service import LayerSwapService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_swap(
    request: CreateSwapRequest,
    layerswap: LayerSwapService = Depends(get_layerswap),
    settlement_address: Optional[str] = Depends(get_settlement_address)
):
    """
    Open a bridge swap that pays out to the settlement wallet.

    Returns the swap with its quote and the deposit actions the user must
    execute; pass its ``id`` as ``swapId`` to the off-ramp endpoint.
    """
    if not settlement_address:
        raise ConfigurationError("Settlement wallet not configured")

    swap = await layerswap.create_swap(
        source_token=request.source_token.upper(),
        amount=request.amount,
        destination_address=settlement_address,
        destination_token=request.destination_token.upper() if request.destination_token else None,
        refuel=request.refuel,
    )
    return swap.model_dump(mode="json")


@router.get("/{swap_id}")
async def get_swap(
    swap_id: str,
    layerswap: LayerSwapService = Depends(get_layerswap)
):
    """Get a bridge swap with its current status."""
    swap = await layerswap.get_swap(swap_id)
    return swap.model_dump(mode="json")
