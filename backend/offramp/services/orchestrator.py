"""Off-ramp saga: bridge deposit, bridge wait, payout order, settlement, payout wait."""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, List, Optional, Tuple

from offramp.config import Settings, settings as default_settings
from offramp.core.errors import (
    BridgeFailure,
    ConfigurationError,
    DoubleSpendGuard,
    InvalidSwapState,
    OffRampError,
    PollTimeout,
    ProviderError,
    SagaInProgress,
    SettlementFailure,
    ValidationError,
)
from offramp.core.polling import PollRegistry
from offramp.core.retry import with_retry
from offramp.core.security import settlement_idempotency_key
from offramp.core.status import (
    PAYOUT_GRAPH,
    SWAP_GRAPH,
    PayoutOrderStatus,
    SwapStatus,
)
from offramp.models.offramp_saga import OffRampSaga, SagaOutcome, SagaStep
from offramp.models.settlement_transfer import TransferState
from offramp.schemas.layerswap import BridgeSwap, ChainCall
from offramp.schemas.offramp import OffRampRequest, OffRampResult
from offramp.schemas.paycrest import PayoutRecipient
from offramp.services.gasless_service import GaslessService
from offramp.services.layerswap_service import LayerSwapService
from offramp.services.paycrest_service import PaycrestService
from offramp.services.settlement_executor import SettlementExecutor
from offramp.services.store import SagaStore
from offramp.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

FIAT_QUANTUM = Decimal("0.01")
PAYOUT_SUCCESS_STATUSES = (PayoutOrderStatus.VALIDATED, PayoutOrderStatus.SETTLED)


class OffRampOrchestrator:
    """
    Drives one off-ramp request through the saga steps.

    Progress is written to the saga record after every step, so re-running a
    request resumes from the first incomplete step instead of replaying
    completed ones. Nothing after the source-chain transfer can be undone;
    errors raised from that point on carry ``source_transfer_submitted``.
    """

    def __init__(
        self,
        layerswap: LayerSwapService,
        paycrest: PaycrestService,
        gasless: GaslessService,
        executor: SettlementExecutor,
        reconciler: WebhookReconciler,
        store: SagaStore,
        polls: Optional[PollRegistry] = None,
        config: Settings = default_settings
    ):
        self.layerswap = layerswap
        self.paycrest = paycrest
        self.gasless = gasless
        self.executor = executor
        self.reconciler = reconciler
        self.store = store
        self.polls = polls or PollRegistry()
        self.config = config

    async def run(self, request: OffRampRequest) -> OffRampResult:
        """
        Run (or resume) the saga for ``request``.

        Raises:
            OffRampError: Any failure, tagged with the step it happened in
        """
        saga = await self.store.get_or_create_saga(request.swap_id, request.masked())

        if saga.outcome == SagaOutcome.SUCCESS.value and saga.settlement_tx_hash and saga.payout_order_id:
            logger.info(f"Saga {request.swap_id} already completed, returning recorded result")
            return self._result(saga, PAYOUT_GRAPH.parse(saga.final_status or "") or PayoutOrderStatus.SETTLED)

        if not await self.store.claim_saga(request.swap_id):
            raise SagaInProgress(
                f"Off-ramp for swap {request.swap_id} is already being processed",
                step=saga.step,
                source_transfer_submitted=saga.source_transfer_submitted,
            )

        # Re-read: another instance may have advanced the saga before releasing it
        saga = await self.store.get_saga(request.swap_id)
        if saga.attempts > 1:
            logger.info(f"Resuming saga {request.swap_id} from step '{saga.step}'")

        try:
            result = await self._run_steps(request, saga)
        except OffRampError as e:
            e.at_step(saga.step, saga.source_transfer_submitted)
            outcome = SagaOutcome.PENDING if isinstance(e, PollTimeout) else SagaOutcome.FAILED
            await self.store.update_saga(
                request.swap_id,
                outcome=outcome.value,
                error_code=e.code,
                error_message=e.message,
            )
            logger.warning(
                f"Saga {request.swap_id} stopped at step '{saga.step}' ({outcome.value}): "
                f"{e.code} {e.message} (source transfer submitted: {saga.source_transfer_submitted})"
            )
            raise
        except Exception as e:
            logger.error(f"Saga {request.swap_id} crashed at step '{saga.step}': {e}", exc_info=True)
            await self.store.update_saga(
                request.swap_id,
                outcome=SagaOutcome.FAILED.value,
                error_code="INTERNAL_ERROR",
                error_message=str(e)[:500],
            )
            raise
        finally:
            await self.store.release_saga(request.swap_id)

        return result

    async def _run_steps(self, request: OffRampRequest, saga: OffRampSaga) -> OffRampResult:
        swap_id = request.swap_id

        # 1. Validate
        await self._enter(saga, SagaStep.VALIDATE)
        token_address = self._settlement_token(request)
        if not saga.source_transfer_submitted:
            await self._verify_recipient(request)

        # 2-3. Fetch swap and fund it from the source chain
        if not saga.source_transfer_submitted:
            await self._enter(saga, SagaStep.FETCH_SWAP)
            calls = await self._fetch_swap(saga, swap_id)

            await self._enter(saga, SagaStep.SOURCE_TRANSFER)
            await self._source_transfer(saga, request, calls)
        else:
            logger.info(f"Saga {swap_id}: source transfer already submitted ({saga.source_tx_hash}), skipping")

        # 4. Await bridge completion
        if saga.bridge_status != SwapStatus.COMPLETED.value:
            await self._enter(saga, SagaStep.AWAIT_BRIDGE)
            await self._await_bridge(saga, swap_id)

        # 5. Price the payout, exactly once
        if saga.fiat_amount is None:
            await self._enter(saga, SagaStep.PRICE_PAYOUT)
            await self._price_payout(saga, request)

        # 6. Create the payout order, at most once
        if saga.payout_order_id is None:
            await self._enter(saga, SagaStep.CREATE_ORDER)
            await self._create_order(saga, request)

        # 7. Settlement transfer to the order's receive address
        if saga.settlement_tx_hash is None:
            await self._enter(saga, SagaStep.SETTLEMENT_TRANSFER)
            await self._settle(saga, token_address)

        # 8. Await payout completion
        await self._enter(saga, SagaStep.AWAIT_PAYOUT)
        return await self._await_payout(saga)

    # ---- steps -----------------------------------------------------------

    def _settlement_token(self, request: OffRampRequest) -> str:
        token_address = self.config.SETTLEMENT_TOKEN_ADDRESSES.get(request.token)
        if not token_address:
            raise ValidationError(f"Token {request.token} cannot be settled for payout")
        if not self.config.SETTLEMENT_RETURN_ADDRESS:
            raise ConfigurationError("SETTLEMENT_RETURN_ADDRESS is not configured")
        return token_address

    async def _verify_recipient(self, request: OffRampRequest) -> None:
        if not self.config.VERIFY_RECIPIENT_ACCOUNT:
            return

        try:
            account = await self._retry(
                lambda: self.paycrest.verify_account(request.bank_code, request.account_number),
                "verify-account",
            )
        except ProviderError as e:
            if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code != 429:
                raise ValidationError(
                    "Bank account could not be verified",
                    context={"bankCode": request.bank_code},
                ) from e
            raise

        if account.account_name.casefold() != request.account_name.casefold():
            logger.warning(
                f"Saga {request.swap_id}: account holder name differs from the bank's record"
            )
        logger.info(f"Saga {request.swap_id}: recipient account at {request.bank_code} verified")

    async def _fetch_swap(self, saga: OffRampSaga, swap_id: str) -> List[ChainCall]:
        swap = await self._retry(lambda: self.layerswap.get_swap(swap_id), "get-swap")

        if swap.swap_status != SwapStatus.USER_TRANSFER_PENDING:
            raise InvalidSwapState(
                f"Swap {swap_id} is '{swap.status}', expected 'user_transfer_pending'",
                context={"bridgeStatus": swap.status},
            )

        calls = [call for action in swap.deposit_actions for call in action.calls]
        if not calls:
            raise InvalidSwapState(f"Swap {swap_id} has no deposit actions")

        await self._save(saga, bridge_status=swap.status, **self._quote_fields(swap))
        logger.info(f"Saga {swap_id}: swap awaiting deposit, {len(calls)} source call(s)")
        return calls

    async def _source_transfer(self, saga: OffRampSaga, request: OffRampRequest, calls: List[ChainCall]) -> None:
        execution = await self.gasless.prepare_execution(request.user_address, calls)

        # From here on the deposit may reach the chain whatever happens next
        await self._save(saga, source_transfer_submitted=True)
        tx_hash = await self.gasless.submit(execution)
        await self._save(saga, source_tx_hash=tx_hash)
        logger.info(f"Saga {request.swap_id}: source transfer submitted {tx_hash}")

    async def _await_bridge(self, saga: OffRampSaga, swap_id: str) -> None:
        last: Optional[SwapStatus] = SWAP_GRAPH.parse(saga.bridge_status or "")

        async def fetch() -> Tuple[SwapStatus, BridgeSwap]:
            nonlocal last
            swap = await self._retry(lambda: self.layerswap.get_swap(swap_id), "get-swap")
            merged = SWAP_GRAPH.advance(last, swap.swap_status)
            if merged != swap.swap_status:
                logger.info(f"Saga {swap_id}: ignoring stale bridge status '{swap.status}' after '{last.value}'")
            last = merged
            return merged, swap

        try:
            status, swap = await self.polls.poll(
                "layerswap",
                swap_id,
                fetch,
                lambda result: SWAP_GRAPH.is_terminal(result[0]),
                self.config.BRIDGE_POLL_INTERVAL,
                self.config.BRIDGE_POLL_TIMEOUT,
            )
        except PollTimeout as e:
            last_status = e.last_result[0].value if e.last_result else saga.bridge_status
            await self._save(saga, bridge_status=last_status)
            e.context.setdefault("bridgeStatus", last_status)
            e.message = f"Bridge swap {swap_id} has not completed yet; it may still complete"
            raise

        await self._save(saga, bridge_status=status.value, **self._quote_fields(swap))

        if status != SwapStatus.COMPLETED:
            raise BridgeFailure(swap_id, status.value)

        if saga.receive_amount is None or saga.min_receive_amount is None:
            raise ProviderError("layerswap", 502, "Bridge swap completed without a quote")
        logger.info(f"Saga {swap_id}: bridge completed, receive amount {saga.receive_amount}")

    async def _price_payout(self, saga: OffRampSaga, request: OffRampRequest) -> None:
        amount = saga.min_receive_amount
        rate = await self._retry(
            lambda: self.paycrest.get_rate(request.token, amount, request.fiat_currency),
            "get-rate",
        )
        fiat_amount = (amount * rate.rate).quantize(FIAT_QUANTUM, rounding=ROUND_DOWN)

        preview = request.destination_fiat_amount
        if preview > 0 and abs(fiat_amount - preview) / preview > self.config.PREVIEW_DRIFT_WARNING:
            logger.warning(
                f"Saga {request.swap_id}: priced {fiat_amount} {request.fiat_currency}, "
                f"preview was {preview}"
            )

        await self._save(saga, payout_rate=rate.rate, fiat_amount=fiat_amount)
        logger.info(
            f"Saga {request.swap_id}: priced {amount} {request.token} at {rate.rate} "
            f"= {fiat_amount} {request.fiat_currency}"
        )

    async def _create_order(self, saga: OffRampSaga, request: OffRampRequest) -> None:
        recipient = PayoutRecipient(
            institution=request.bank_code,
            account_identifier=request.account_number,
            account_name=request.account_name,
            currency=request.fiat_currency,
        )
        order = await self._retry(
            lambda: self.paycrest.create_order(
                amount=saga.receive_amount,
                token=request.token,
                rate=saga.payout_rate,
                recipient=recipient,
                return_address=self.config.SETTLEMENT_RETURN_ADDRESS,
                reference=saga.idempotency_token,
            ),
            "create-order",
        )

        await self._save(
            saga,
            payout_order_id=order.id,
            payout_receive_address=order.receive_address,
            payout_sender_fee=order.sender_fee,
            payout_transaction_fee=order.transaction_fee,
        )
        await self.reconciler.apply_status(order.id, order.status, source="create")
        logger.info(f"Saga {request.swap_id}: payout order {order.id} created")

    async def _settle(self, saga: OffRampSaga, token_address: str) -> None:
        key = settlement_idempotency_key(saga.payout_order_id)
        existing = await self.executor.get_transfer(key)

        try:
            if existing is not None and existing.state == TransferState.CONFIRMED.value:
                tx_hash = existing.tx_hash
                logger.info(f"Saga {saga.swap_id}: settlement {key} already confirmed ({tx_hash})")
            elif existing is not None and existing.state == TransferState.SUBMITTED.value:
                tx_hash = (await self.executor.confirm_recorded(existing)).tx_hash
            elif existing is not None and existing.tx_hash:
                raise DoubleSpendGuard(key, existing.tx_hash, existing.state)
            else:
                if saga.settlement_amount is None:
                    total = saga.receive_amount + saga.payout_sender_fee + saga.payout_transaction_fee
                    base_units = await self.executor.quote_base_units(token_address, total)
                    await self._save(saga, settlement_amount=str(base_units))
                    logger.info(f"Saga {saga.swap_id}: settlement amount {total} ({base_units} base units)")

                result = await self.executor.execute(
                    key,
                    token_address,
                    saga.payout_receive_address,
                    int(saga.settlement_amount),
                )
                tx_hash = result.tx_hash
        except SettlementFailure as e:
            logger.error(
                f"Saga {saga.swap_id}: settlement failed (broadcast uncertain: {e.broadcast_uncertain})",
                exc_info=True,
            )
            e.context.setdefault("paycrestOrderId", saga.payout_order_id)
            raise

        await self._save(saga, settlement_tx_hash=tx_hash)

    async def _await_payout(self, saga: OffRampSaga) -> OffRampResult:
        order_id = saga.payout_order_id

        async def fetch() -> PayoutOrderStatus:
            # A webhook may already have recorded a terminal status
            recorded = await self.reconciler.current_status(order_id)
            if PAYOUT_GRAPH.is_terminal(recorded):
                return recorded
            state = await self._retry(lambda: self.paycrest.get_order(order_id), "get-order")
            merged = await self.reconciler.apply_status(order_id, state.status, source="poll")
            return merged.status

        try:
            status = await self.polls.poll(
                "paycrest",
                order_id,
                fetch,
                PAYOUT_GRAPH.is_terminal,
                self.config.PAYOUT_POLL_INTERVAL,
                self.config.PAYOUT_POLL_TIMEOUT,
            )
        except PollTimeout as e:
            last = e.last_result or PayoutOrderStatus.PENDING
            await self._save(saga, final_status=last.value, outcome=SagaOutcome.PENDING.value)
            logger.warning(f"Saga {saga.swap_id}: payout {order_id} still '{last.value}' after {e.timeout:g}s")
            return self._result(saga, last, pending=True)

        if status in PAYOUT_SUCCESS_STATUSES:
            outcome = SagaOutcome.SUCCESS
        else:
            outcome = SagaOutcome.FAILED
            logger.error(f"Saga {saga.swap_id}: payout order {order_id} ended '{status.value}'")

        await self._save(
            saga,
            step=SagaStep.DONE.value,
            final_status=status.value,
            outcome=outcome.value,
            error_code=None,
            error_message=None,
        )
        logger.info(f"Saga {saga.swap_id}: done, payout '{status.value}'")
        return self._result(saga, status)

    # ---- helpers ---------------------------------------------------------

    async def _enter(self, saga: OffRampSaga, step: SagaStep) -> None:
        logger.info(f"Saga {saga.swap_id}: step '{step.value}'")
        await self._save(saga, step=step.value)

    async def _save(self, saga: OffRampSaga, **fields: Any) -> None:
        for name, value in fields.items():
            setattr(saga, name, value)
        await self.store.update_saga(saga.swap_id, **fields)

    async def _retry(self, op, label: str):
        return await with_retry(
            op,
            max_attempts=self.config.RETRY_MAX_ATTEMPTS,
            base_delay=self.config.RETRY_BASE_DELAY,
            label=label,
        )

    @staticmethod
    def _quote_fields(swap: BridgeSwap) -> dict:
        if swap.quote is None:
            return {}
        return {
            "receive_amount": swap.quote.receive_amount,
            "min_receive_amount": swap.quote.min_receive_amount,
        }

    @staticmethod
    def _result(saga: OffRampSaga, status: PayoutOrderStatus, pending: bool = False) -> OffRampResult:
        if pending:
            outcome = "pending"
        elif status in PAYOUT_SUCCESS_STATUSES:
            outcome = "success"
        else:
            outcome = "failed"
        return OffRampResult(
            status=outcome,
            source_chain_tx_hash=saga.source_tx_hash,
            settlement_tx_hash=saga.settlement_tx_hash,
            payout_order_id=saga.payout_order_id,
            final_status=status.value,
            fiat_amount=saga.fiat_amount,
        )
