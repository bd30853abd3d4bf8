"""Saga persistence: narrow read / write / compare-and-swap over async SQLAlchemy."""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offramp.core.errors import DoubleSpendGuard
from offramp.core.security import request_idempotency_token
from offramp.models.offramp_saga import OffRampSaga, SagaOutcome
from offramp.models.payout_order_status import PayoutOrderStatusRecord
from offramp.models.settlement_transfer import SettlementTransfer, TransferState

logger = logging.getLogger(__name__)


class SagaStore:
    """
    Storage used by the saga, the settlement executor and the webhook endpoint.

    Each method runs in its own short transaction. Concurrency control is
    optimistic: claims and status merges are conditional UPDATEs whose row
    count tells the caller whether it won.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ---- sagas -----------------------------------------------------------

    async def get_saga(self, swap_id: str) -> Optional[OffRampSaga]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OffRampSaga).where(OffRampSaga.swap_id == swap_id)
            )
            return result.scalar_one_or_none()

    async def get_or_create_saga(self, swap_id: str, request_payload: dict) -> OffRampSaga:
        """Return the saga for ``swap_id``, creating it on first sight."""
        existing = await self.get_saga(swap_id)
        if existing:
            return existing

        saga = OffRampSaga(
            swap_id=swap_id,
            idempotency_token=request_idempotency_token(swap_id),
            request_payload=json.dumps(request_payload, sort_keys=True),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(saga)
            logger.info(f"Saga record created for swap {swap_id}")
            return saga
        except IntegrityError:
            # Lost the insert race to a concurrent request for the same swap
            existing = await self.get_saga(swap_id)
            if existing is None:
                raise
            return existing

    async def claim_saga(self, swap_id: str) -> bool:
        """Mark the saga as running. False if another instance holds it."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(OffRampSaga)
                    .where(OffRampSaga.swap_id == swap_id, OffRampSaga.running.is_(False))
                    .values(
                        running=True,
                        outcome=SagaOutcome.RUNNING.value,
                        attempts=OffRampSaga.attempts + 1,
                        updated_at=datetime.utcnow(),
                    )
                )
                return result.rowcount == 1

    async def release_saga(self, swap_id: str) -> None:
        await self.update_saga(swap_id, running=False)

    async def update_saga(self, swap_id: str, **fields: Any) -> None:
        fields["updated_at"] = datetime.utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(OffRampSaga).where(OffRampSaga.swap_id == swap_id).values(**fields)
                )

    # ---- payout order status ---------------------------------------------

    async def get_order_status(self, order_id: str) -> Optional[PayoutOrderStatusRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayoutOrderStatusRecord).where(PayoutOrderStatusRecord.order_id == order_id)
            )
            return result.scalar_one_or_none()

    async def insert_order_status(
        self,
        order_id: str,
        status: str,
        source: str,
        provider_timestamp: Optional[str] = None
    ) -> bool:
        """Create the status record. False if one already exists."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(PayoutOrderStatusRecord(
                        order_id=order_id,
                        status=status,
                        source=source,
                        version=1,
                        provider_timestamp=provider_timestamp,
                        updated_at=datetime.utcnow(),
                    ))
            return True
        except IntegrityError:
            return False

    async def compare_and_set_order_status(
        self,
        order_id: str,
        expected_version: int,
        status: str,
        source: str,
        provider_timestamp: Optional[str] = None
    ) -> bool:
        """Write ``status`` only if the record is still at ``expected_version``."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PayoutOrderStatusRecord)
                    .where(
                        PayoutOrderStatusRecord.order_id == order_id,
                        PayoutOrderStatusRecord.version == expected_version,
                    )
                    .values(
                        status=status,
                        source=source,
                        version=expected_version + 1,
                        provider_timestamp=provider_timestamp,
                        updated_at=datetime.utcnow(),
                    )
                )
                return result.rowcount == 1

    # ---- settlement transfers --------------------------------------------

    async def get_transfer(self, idempotency_key: str) -> Optional[SettlementTransfer]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SettlementTransfer).where(SettlementTransfer.idempotency_key == idempotency_key)
            )
            return result.scalar_one_or_none()

    async def reserve_transfer(
        self,
        idempotency_key: str,
        to_address: str,
        token_address: str,
        amount_base_units: int
    ) -> SettlementTransfer:
        """
        Claim ``idempotency_key`` for a new transfer.

        A key whose earlier attempt failed before anything was signed may be
        claimed again. Any other existing record is rejected.

        Raises:
            DoubleSpendGuard: A transfer already exists for the key
        """
        transfer = SettlementTransfer(
            idempotency_key=idempotency_key,
            to_address=to_address,
            token_address=token_address,
            amount_base_units=str(amount_base_units),
            state=TransferState.RESERVED.value,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(transfer)
            return transfer
        except IntegrityError:
            pass

        existing = await self.get_transfer(idempotency_key)
        if existing is None:
            raise DoubleSpendGuard(idempotency_key, None, "reserved")

        if existing.tx_hash is None and existing.state == TransferState.FAILED.value:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(SettlementTransfer)
                        .where(
                            SettlementTransfer.idempotency_key == idempotency_key,
                            SettlementTransfer.state == TransferState.FAILED.value,
                            SettlementTransfer.tx_hash.is_(None),
                        )
                        .values(
                            state=TransferState.RESERVED.value,
                            to_address=to_address,
                            token_address=token_address,
                            amount_base_units=str(amount_base_units),
                            error_message=None,
                        )
                    )
                    if result.rowcount == 1:
                        logger.info(f"Re-reserved settlement key {idempotency_key} after unsigned failure")
                        return await self._reload_transfer(session, idempotency_key)
            existing = await self.get_transfer(idempotency_key)

        logger.warning(
            f"Double-spend guard: settlement key {idempotency_key} already "
            f"{existing.state} (tx={existing.tx_hash})"
        )
        raise DoubleSpendGuard(idempotency_key, existing.tx_hash, existing.state)

    async def mark_transfer_submitted(self, idempotency_key: str, tx_hash: str) -> None:
        await self._update_transfer(
            idempotency_key,
            tx_hash=tx_hash,
            state=TransferState.SUBMITTED.value,
        )

    async def mark_transfer_confirmed(self, idempotency_key: str) -> None:
        await self._update_transfer(
            idempotency_key,
            state=TransferState.CONFIRMED.value,
            broadcast_uncertain=False,
            confirmed_at=datetime.utcnow(),
        )

    async def mark_transfer_failed(self, idempotency_key: str, broadcast_uncertain: bool, error: str) -> None:
        await self._update_transfer(
            idempotency_key,
            state=TransferState.FAILED.value,
            broadcast_uncertain=broadcast_uncertain,
            error_message=error[:500],
        )

    async def _update_transfer(self, idempotency_key: str, **fields: Any) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(SettlementTransfer)
                    .where(SettlementTransfer.idempotency_key == idempotency_key)
                    .values(**fields)
                )

    @staticmethod
    async def _reload_transfer(session: AsyncSession, idempotency_key: str) -> SettlementTransfer:
        result = await session.execute(
            select(SettlementTransfer).where(SettlementTransfer.idempotency_key == idempotency_key)
        )
        return result.scalar_one()
