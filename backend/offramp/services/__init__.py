"""Business logic services package."""

from offramp.services.layerswap_service import LayerSwapService
from offramp.services.paycrest_service import PaycrestService
from offramp.services.gasless_service import GaslessService, SignedExecution
from offramp.services.chain_service import EvmSettlementChain
from offramp.services.store import SagaStore
from offramp.services.settlement_executor import SettlementExecutor, SettlementResult
from offramp.services.webhook_reconciler import WebhookReconciler
from offramp.services.orchestrator import OffRampOrchestrator

__all__ = [
    # Provider clients
    "LayerSwapService",
    "PaycrestService",
    "GaslessService",
    "SignedExecution",
    # Settlement
    "EvmSettlementChain",
    "SettlementExecutor",
    "SettlementResult",
    # Persistence and reconciliation
    "SagaStore",
    "WebhookReconciler",
    # Saga
    "OffRampOrchestrator",
]
