"""Tests for the off-ramp saga."""

import json
from decimal import Decimal

import pytest

from offramp.core.errors import (
    BridgeFailure,
    DoubleSpendGuard,
    InvalidSwapState,
    PollTimeout,
    ProviderError,
    SagaInProgress,
    SettlementFailure,
    SponsorshipIneligible,
    ValidationError,
)
from offramp.core.security import compute_signature, settlement_idempotency_key
from offramp.models.offramp_saga import SagaOutcome, SagaStep
from offramp.models.settlement_transfer import TransferState
from offramp.services.chain_service import ConfirmationTimeout

from conftest import RECEIVE_ADDRESS, RETURN_ADDRESS, WEBHOOK_SECRET, make_request


async def test_happy_path_settles_once(orchestrator, layerswap, paycrest, gasless, chain, store):
    """Scenario A: bridge completes within two polls, payout settles."""
    layerswap.statuses = ["user_transfer_pending", "user_transfer_pending", "completed"]

    result = await orchestrator.run(make_request())

    assert result.status == "success"
    assert result.final_status == "settled"
    assert result.source_chain_tx_hash == gasless.tx_hash
    assert result.payout_order_id == "order-1"
    assert result.settlement_tx_hash == chain.sent[0].tx_hash
    assert result.fiat_amount == Decimal("148500.00")

    # One fetch in step 2, two polls in step 4
    assert layerswap.calls == 3
    assert len(gasless.submitted) == 1
    assert len(chain.sent) == 1

    saga = await store.get_saga("swap-1")
    assert saga.outcome == SagaOutcome.SUCCESS.value
    assert saga.step == SagaStep.DONE.value
    assert saga.running is False
    assert saga.source_transfer_submitted is True
    assert saga.settlement_amount == "100250000"  # 99.5 + 0.5 + 0.25 USDC at 6 decimals


async def test_bridge_wait_sleeps_between_polls_only(orchestrator, layerswap, clock):
    layerswap.statuses = ["user_transfer_pending", "user_transfer_pending", "completed"]

    await orchestrator.run(make_request())

    # Payout was already terminal on its first poll
    assert clock.sleeps == [5.0]


async def test_payout_priced_once_from_min_receive_amount(orchestrator, paycrest):
    await orchestrator.run(make_request())

    assert paycrest.rate_requests == [Decimal("99.0")]
    assert len(paycrest.created) == 1
    order = paycrest.created[0]
    assert order["amount"] == Decimal("99.5")
    assert order["rate"] == Decimal("1500")
    assert order["return_address"] == RETURN_ADDRESS
    assert order["recipient"].account_identifier == "0123456789"
    assert order["recipient"].currency == "NGN"


async def test_order_reference_is_request_idempotency_token(orchestrator, paycrest, store):
    await orchestrator.run(make_request())

    saga = await store.get_saga("swap-1")
    assert paycrest.created[0]["reference"] == saga.idempotency_token


async def test_settlement_goes_to_order_receive_address(orchestrator, executor):
    await orchestrator.run(make_request())

    transfer = await executor.get_transfer(settlement_idempotency_key("order-1"))
    assert transfer.to_address == RECEIVE_ADDRESS
    assert transfer.amount_base_units == "100250000"
    assert transfer.state == TransferState.CONFIRMED.value


async def test_bridge_expired_is_failure_without_settlement(orchestrator, layerswap, paycrest, chain, store):
    """Scenario B: swap expires on the first poll."""
    layerswap.statuses = ["user_transfer_pending", "expired"]

    with pytest.raises(BridgeFailure) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.step == SagaStep.AWAIT_BRIDGE.value
    assert exc_info.value.source_transfer_submitted is True
    assert exc_info.value.context["bridgeStatus"] == "expired"
    assert paycrest.created == []
    assert chain.signed == []

    saga = await store.get_saga("swap-1")
    assert saga.outcome == SagaOutcome.FAILED.value
    assert saga.error_code == "BRIDGE_FAILURE"


@pytest.mark.parametrize("ending", ["cancelled", "expired"])
async def test_bridge_ending_while_bridging_is_failure(orchestrator, layerswap, paycrest, chain, store, ending):
    layerswap.statuses = ["user_transfer_pending", "ls_transfer_pending", ending]

    with pytest.raises(BridgeFailure) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.context["bridgeStatus"] == ending
    assert paycrest.created == []
    assert chain.signed == []
    saga = await store.get_saga("swap-1")
    assert saga.bridge_status == ending


async def test_bridge_timeout_is_pending(orchestrator, layerswap, paycrest, store):
    layerswap.statuses = ["user_transfer_pending", "ls_transfer_pending"]

    with pytest.raises(PollTimeout) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.http_status == 202
    assert exc_info.value.step == SagaStep.AWAIT_BRIDGE.value
    assert exc_info.value.context["bridgeStatus"] == "ls_transfer_pending"
    assert paycrest.created == []

    saga = await store.get_saga("swap-1")
    assert saga.outcome == SagaOutcome.PENDING.value
    assert saga.running is False


async def test_stale_bridge_status_does_not_move_backward(orchestrator, layerswap):
    layerswap.statuses = [
        "user_transfer_pending",
        "ls_transfer_pending",
        "user_transfer_pending",
        "completed",
    ]

    result = await orchestrator.run(make_request())

    assert result.status == "success"


async def test_swap_not_awaiting_deposit_is_rejected(orchestrator, layerswap, gasless):
    layerswap.statuses = ["ls_transfer_pending"]

    with pytest.raises(InvalidSwapState) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.http_status == 400
    assert exc_info.value.step == SagaStep.FETCH_SWAP.value
    assert exc_info.value.source_transfer_submitted is False
    assert gasless.prepared == []


async def test_swap_without_deposit_actions_is_rejected(orchestrator, layerswap, gasless):
    layerswap.deposit_actions = []

    with pytest.raises(InvalidSwapState):
        await orchestrator.run(make_request())

    assert gasless.submitted == []


async def test_ineligible_account_fails_before_submission(orchestrator, gasless, store):
    gasless.compatible = False

    with pytest.raises(SponsorshipIneligible) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.step == SagaStep.SOURCE_TRANSFER.value
    assert exc_info.value.source_transfer_submitted is False
    assert gasless.submitted == []

    saga = await store.get_saga("swap-1")
    assert saga.source_transfer_submitted is False


async def test_submit_error_marks_source_transfer_submitted(orchestrator, gasless):
    gasless.submit_error = ProviderError("avnu", None)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.source_transfer_submitted is True
    assert exc_info.value.to_dict()["sourceTransferSubmitted"] is True


async def test_unverifiable_account_is_validation_error(orchestrator, paycrest, gasless):
    paycrest.verify_error = ProviderError("paycrest", 400)

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.step == SagaStep.VALIDATE.value
    assert gasless.prepared == []


async def test_recipient_check_can_be_disabled(orchestrator, paycrest, test_settings):
    test_settings.VERIFY_RECIPIENT_ACCOUNT = False
    paycrest.verify_error = ProviderError("paycrest", 400)

    result = await orchestrator.run(make_request())

    assert result.status == "success"


async def test_token_without_settlement_address_is_rejected(orchestrator, gasless):
    with pytest.raises(ValidationError):
        await orchestrator.run(make_request(token="ETH"))

    assert gasless.prepared == []


async def test_settlement_uncertain_broadcast_is_not_retried(orchestrator, chain, store):
    """Scenario E: the send fails after the transaction may have gone out."""
    chain.broadcast_error = ConnectionError("connection reset by peer")

    with pytest.raises(SettlementFailure) as exc_info:
        await orchestrator.run(make_request())

    error = exc_info.value
    assert error.broadcast_uncertain is True
    assert error.step == SagaStep.SETTLEMENT_TRANSFER.value
    assert error.source_transfer_submitted is True
    assert error.to_dict()["broadcastUncertain"] is True
    assert error.to_dict()["txHash"] == chain.signed[0].tx_hash
    assert len(chain.signed) == 1

    # Running the request again must not sign a second transfer
    chain.broadcast_error = None
    with pytest.raises(DoubleSpendGuard):
        await orchestrator.run(make_request())
    assert len(chain.signed) == 1
    assert chain.sent == []


async def test_settlement_confirmation_timeout_is_uncertain(orchestrator, chain):
    chain.confirm_error = ConfirmationTimeout("no receipt")

    with pytest.raises(SettlementFailure) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.broadcast_uncertain is True


async def test_reverted_settlement_is_certain_failure(orchestrator, chain):
    chain.receipt_status = 0

    with pytest.raises(SettlementFailure) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.broadcast_uncertain is False


async def test_webhook_settles_while_polling(orchestrator, paycrest, reconciler, chain, clock, store):
    """Scenario C: a webhook reports settled while the poller still sees pending."""
    paycrest.order_statuses = ["pending"]

    async def deliver_webhook():
        if paycrest.order_calls == 1:
            body = json.dumps({"orderId": "order-1", "status": "settled", "timestamp": "2026-10-18T10:00:00Z"}).encode()
            await reconciler.handle(body, compute_signature(body, WEBHOOK_SECRET))

    clock.on_sleep = deliver_webhook

    result = await orchestrator.run(make_request())

    assert result.final_status == "settled"
    assert result.status == "success"
    assert paycrest.order_calls == 1
    assert len(chain.sent) == 1

    record = await store.get_order_status("order-1")
    assert record.status == "settled"
    assert record.source == "webhook"


async def test_payout_timeout_returns_pending(orchestrator, paycrest, store):
    paycrest.order_statuses = ["pending"]

    result = await orchestrator.run(make_request())

    assert result.status == "pending"
    assert result.final_status == "pending"
    assert result.settlement_tx_hash is not None

    saga = await store.get_saga("swap-1")
    assert saga.outcome == SagaOutcome.PENDING.value


async def test_refunded_payout_reports_failed(orchestrator, paycrest, store):
    paycrest.order_statuses = ["refunded"]

    result = await orchestrator.run(make_request())

    assert result.status == "failed"
    assert result.final_status == "refunded"
    saga = await store.get_saga("swap-1")
    assert saga.outcome == SagaOutcome.FAILED.value


async def test_resume_after_payout_timeout_skips_completed_steps(orchestrator, layerswap, paycrest, gasless, chain):
    paycrest.order_statuses = ["pending"]
    first = await orchestrator.run(make_request())
    assert first.status == "pending"
    swap_calls = layerswap.calls

    paycrest.order_statuses = ["validated"]
    paycrest.order_calls = 0
    second = await orchestrator.run(make_request())

    assert second.status == "success"
    assert second.final_status == "validated"
    assert second.settlement_tx_hash == first.settlement_tx_hash
    assert layerswap.calls == swap_calls
    assert len(gasless.submitted) == 1
    assert len(paycrest.created) == 1
    assert len(paycrest.rate_requests) == 1
    assert len(chain.signed) == 1


async def test_resume_after_bridge_timeout_does_not_resubmit(orchestrator, layerswap, gasless):
    layerswap.statuses = ["user_transfer_pending", "ls_transfer_pending"]
    with pytest.raises(PollTimeout):
        await orchestrator.run(make_request())

    layerswap.statuses = ["completed"]
    layerswap.calls = 0
    result = await orchestrator.run(make_request())

    assert result.status == "success"
    assert len(gasless.submitted) == 1


async def test_completed_saga_returns_recorded_result(orchestrator, layerswap, chain):
    first = await orchestrator.run(make_request())
    calls = layerswap.calls

    second = await orchestrator.run(make_request())

    assert second.to_response() == first.to_response()
    assert layerswap.calls == calls
    assert len(chain.sent) == 1


async def test_claimed_saga_is_rejected(orchestrator, store, gasless):
    await store.get_or_create_saga("swap-1", {"swapId": "swap-1"})
    assert await store.claim_saga("swap-1") is True

    with pytest.raises(SagaInProgress) as exc_info:
        await orchestrator.run(make_request())

    assert exc_info.value.http_status == 409
    assert gasless.prepared == []


async def test_resume_after_order_failure_uses_stored_amounts_exactly(orchestrator, layerswap, paycrest, executor, store):
    layerswap.quote["receive_amount"] = "99.1"
    paycrest.create_error = ProviderError("paycrest", 400)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.run(make_request())
    assert exc_info.value.step == SagaStep.CREATE_ORDER.value

    result = await orchestrator.run(make_request())

    assert result.status == "success"
    assert len(paycrest.rate_requests) == 1
    assert len(paycrest.created) == 1
    assert paycrest.created[0]["amount"] == Decimal("99.1")
    assert str(paycrest.created[0]["amount"]) == "99.1"

    saga = await store.get_saga("swap-1")
    assert saga.receive_amount == Decimal("99.1")
    assert saga.payout_sender_fee == Decimal("0.5")
    # 99.1 + 0.5 + 0.25 USDC at 6 decimals
    assert saga.settlement_amount == "99850000"
    transfer = await executor.get_transfer(settlement_idempotency_key("order-1"))
    assert transfer.amount_base_units == "99850000"


async def test_resume_after_unsigned_settlement_failure_keeps_amount(orchestrator, layerswap, chain, executor, store):
    layerswap.quote["receive_amount"] = "99.1"
    chain.sign_error = RuntimeError("rpc unavailable")

    with pytest.raises(SettlementFailure) as exc_info:
        await orchestrator.run(make_request())
    assert exc_info.value.broadcast_uncertain is False

    chain.sign_error = None
    result = await orchestrator.run(make_request())

    assert result.status == "success"
    assert len(chain.sent) == 1
    saga = await store.get_saga("swap-1")
    assert saga.settlement_amount == "99850000"
    transfer = await executor.get_transfer(settlement_idempotency_key("order-1"))
    assert transfer.amount_base_units == "99850000"
    assert transfer.state == TransferState.CONFIRMED.value
