"""Settlement transfer ledger keyed by idempotency key."""

from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import String, Text, Boolean, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from offramp.database import Base


class TransferState(str, Enum):
    """Settlement transfer lifecycle."""
    RESERVED = "reserved"  # Key claimed, nothing signed yet
    SUBMITTED = "submitted"  # Signed; hash known, broadcast attempted
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SettlementTransfer(Base):
    """One on-chain settlement transfer. The unique key is the double-spend guard."""

    __tablename__ = "settlement_transfers"

    # Primary Key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(96),
        unique=True,
        nullable=False,
        index=True
    )

    to_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount_base_units: Mapped[str] = mapped_column(String(80), nullable=False)

    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True, unique=True)
    state: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TransferState.RESERVED.value,
        index=True
    )
    broadcast_uncertain: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=datetime.utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP,
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<SettlementTransfer(key={self.idempotency_key}, state={self.state}, tx_hash={self.tx_hash})>"
