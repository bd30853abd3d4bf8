"""Off-ramp saga API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from offramp.api.deps import get_orchestrator, get_store
from offramp.schemas.offramp import OffRampRequest, SagaView
from offramp.services.orchestrator import OffRampOrchestrator
from offramp.services.store import SagaStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("")
async def run_offramp(
    request: OffRampRequest,
    orchestrator: OffRampOrchestrator = Depends(get_orchestrator)
):
    """
    Cash out a bridge swap to a bank account.

    Runs the saga to completion (or resumes it): user deposit, bridge wait,
    payout pricing and order, settlement transfer, payout wait.

    Returns:
        ``{status, sourceChainTxHash, settlementTxHash, paycrestOrderId, finalStatus, fiatAmount}``

    Raises:
        400: Invalid request, swap not awaiting deposit, account not sponsorable
        202: Bridge has not completed in time (pending, may still complete)
        409: Saga already running or settlement already sent
        500/502: Bridge, payout or settlement failure
    """
    logger.info(
        f"Off-ramp requested for swap {request.swap_id}: {request.amount} {request.token} "
        f"-> {request.fiat_currency}"
    )
    result = await orchestrator.run(request)
    return result.to_response()


@router.get("/{swap_id}", response_model=SagaView, response_model_by_alias=True)
async def get_offramp(
    swap_id: str,
    store: SagaStore = Depends(get_store)
):
    """Get the recorded progress of an off-ramp saga."""
    saga = await store.get_saga(swap_id)
    if not saga:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No off-ramp found for swap {swap_id}"
        )
    return SagaView.model_validate(saga)
