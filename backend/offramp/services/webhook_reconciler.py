"""Payout order status merging, for provider webhooks and local polling alike."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from offramp.config import settings
from offramp.core.errors import SignatureInvalid, ValidationError
from offramp.core.security import verify_signature
from offramp.core.status import PAYOUT_GRAPH, PayoutOrderStatus
from offramp.schemas.webhook import WebhookAck, WebhookEvent
from offramp.services.store import SagaStore

logger = logging.getLogger(__name__)

# Concurrent writers re-read and retry the compare-and-swap this many times
MAX_MERGE_ATTEMPTS = 5


@dataclass(frozen=True)
class MergeResult:
    status: PayoutOrderStatus
    changed: bool


class WebhookReconciler:
    """
    Forward-only merge of payout order statuses.

    ``handle`` is the webhook entry point. ``apply_status`` is the merge rule
    itself and is also what the saga uses for polled statuses, so whichever
    path observes a terminal status first wins and the other becomes a no-op.
    """

    def __init__(self, store: SagaStore, secret: str = settings.PAYCREST_WEBHOOK_SECRET):
        self.store = store
        self.secret = secret

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Verify and apply one webhook delivery.

        Raises:
            SignatureInvalid: Missing or mismatching signature; nothing is read
            ValidationError: Signed body is not a well-formed event
        """
        if not verify_signature(raw_body, signature, self.secret):
            logger.warning("Rejected payout webhook with missing or invalid signature")
            raise SignatureInvalid("Invalid webhook signature")

        try:
            event = WebhookEvent.model_validate(json.loads(raw_body))
        except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as e:
            logger.warning(f"Signed payout webhook is not a valid event: {e}")
            raise ValidationError("Malformed webhook event")

        status = PAYOUT_GRAPH.parse(event.status.lower())
        if status is None:
            logger.info(f"Ignoring unknown payout status '{event.status}' for order {event.order_id}")
            return WebhookAck()

        await self.apply_status(event.order_id, status, source="webhook", provider_timestamp=event.timestamp)
        return WebhookAck()

    async def current_status(self, order_id: str) -> Optional[PayoutOrderStatus]:
        record = await self.store.get_order_status(order_id)
        return PAYOUT_GRAPH.parse(record.status) if record else None

    async def apply_status(
        self,
        order_id: str,
        reported: PayoutOrderStatus,
        source: str,
        provider_timestamp: Optional[str] = None
    ) -> MergeResult:
        """
        Record ``reported`` if it is a legal forward move from the stored status.

        Backward, duplicate and illegal reports leave the record untouched.
        """
        for _ in range(MAX_MERGE_ATTEMPTS):
            record = await self.store.get_order_status(order_id)

            if record is None:
                if await self.store.insert_order_status(order_id, reported.value, source, provider_timestamp):
                    logger.info(f"Payout order {order_id}: recorded '{reported.value}' from {source}")
                    return MergeResult(reported, True)
                continue

            current = PAYOUT_GRAPH.parse(record.status)
            if current == reported or not PAYOUT_GRAPH.can_transition(current, reported):
                logger.info(
                    f"Payout order {order_id}: ignoring '{reported.value}' from {source} "
                    f"(recorded '{record.status}')"
                )
                return MergeResult(current, False)

            if await self.store.compare_and_set_order_status(
                order_id, record.version, reported.value, source, provider_timestamp
            ):
                logger.info(f"Payout order {order_id}: '{record.status}' -> '{reported.value}' from {source}")
                return MergeResult(reported, True)

        # Every attempt lost a race; report what is stored now
        final = await self.current_status(order_id)
        logger.warning(f"Payout order {order_id}: gave up merging '{reported.value}', stored '{final}'")
        return MergeResult(final or reported, False)
