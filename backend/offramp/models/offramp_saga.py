"""Off-ramp saga record: one row per bridge swap being cashed out."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from sqlalchemy import String, Text, Boolean, Integer, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from offramp.database import Base, DecimalString


class SagaStep(str, Enum):
    """Saga steps in execution order."""
    VALIDATE = "validate"
    FETCH_SWAP = "fetch_swap"
    SOURCE_TRANSFER = "source_transfer"
    AWAIT_BRIDGE = "await_bridge"
    PRICE_PAYOUT = "price_payout"
    CREATE_ORDER = "create_order"
    SETTLEMENT_TRANSFER = "settlement_transfer"
    AWAIT_PAYOUT = "await_payout"
    DONE = "done"


class SagaOutcome(str, Enum):
    """Overall result recorded on the saga."""
    RUNNING = "running"
    SUCCESS = "success"
    PENDING = "pending"  # A wait timed out; the outcome is not known yet
    FAILED = "failed"


class OffRampSaga(Base):
    """Persisted progress of one off-ramp request."""

    __tablename__ = "offramp_sagas"

    # Primary Key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Request identity
    swap_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True
    )
    idempotency_token: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False
    )  # Sent to the payout provider as the order reference
    request_payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON snapshot, account number masked

    # Progress
    step: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=SagaStep.VALIDATE.value
    )
    outcome: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SagaOutcome.RUNNING.value,
        index=True
    )
    running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # Claimed by a saga instance

    # Bridge
    source_tx_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    source_transfer_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bridge_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    receive_amount: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)
    min_receive_amount: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)

    # Pricing (computed exactly once)
    payout_rate: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)
    fiat_amount: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)

    # Payout order
    payout_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payout_receive_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    payout_sender_fee: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)
    payout_transaction_fee: Mapped[Decimal | None] = mapped_column(DecimalString, nullable=True)

    # Settlement
    settlement_amount: Mapped[str | None] = mapped_column(String(80), nullable=True)  # Token base units, decimal string
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    final_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<OffRampSaga(swap_id={self.swap_id}, step={self.step}, outcome={self.outcome})>"
