"""Database models package."""

from offramp.models.offramp_saga import OffRampSaga, SagaStep, SagaOutcome
from offramp.models.payout_order_status import PayoutOrderStatusRecord
from offramp.models.settlement_transfer import SettlementTransfer, TransferState

__all__ = [
    "OffRampSaga",
    "SagaStep",
    "SagaOutcome",
    "PayoutOrderStatusRecord",
    "SettlementTransfer",
    "TransferState",
]
