"""Recorded payout order status shared by polling and webhooks."""

from datetime import datetime

from sqlalchemy import String, Integer, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from offramp.database import Base


class PayoutOrderStatusRecord(Base):
    """Latest known status of a payout order.

    Written only through a compare-and-swap on ``version`` so that the poller
    and the webhook endpoint, which share no lock, can both merge updates.
    """

    __tablename__ = "payout_order_statuses"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False)  # poll|webhook|create
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    provider_timestamp: Mapped[str | None] = mapped_column(String(40), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<PayoutOrderStatusRecord(order_id={self.order_id}, status={self.status}, source={self.source})>"
