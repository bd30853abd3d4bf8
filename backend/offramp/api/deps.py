"""API dependencies: services owned by the application's runtime."""

from fastapi import Request

from offramp.services.layerswap_service import LayerSwapService
from offramp.services.orchestrator import OffRampOrchestrator
from offramp.services.paycrest_service import PaycrestService
from offramp.services.store import SagaStore
from offramp.services.webhook_reconciler import WebhookReconciler


def get_orchestrator(request: Request) -> OffRampOrchestrator:
    return request.app.state.orchestrator


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.reconciler


def get_store(request: Request) -> SagaStore:
    return request.app.state.store


def get_layerswap(request: Request) -> LayerSwapService:
    return request.app.state.layerswap


def get_paycrest(request: Request) -> PaycrestService:
    return request.app.state.paycrest


def get_settlement_address(request: Request) -> str | None:
    """Address of the settlement wallet that receives bridged funds."""
    return request.app.state.settlement_chain.address
