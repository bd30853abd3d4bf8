"""Pytest configuration and fixtures for testing."""

import json
import os
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYCREST_WEBHOOK_SECRET", "test-webhook-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import offramp.models  # noqa: F401  registers tables on Base.metadata
from offramp.config import Settings
from offramp.core.errors import SponsorshipIneligible
from offramp.core.polling import PollRegistry
from offramp.core.status import PayoutOrderStatus
from offramp.database import Base
from offramp.main import app
from offramp.schemas.layerswap import parse_swap_envelope
from offramp.schemas.offramp import OffRampRequest
from offramp.schemas.paycrest import PayoutOrder, PayoutOrderState, PayoutRate, VerifiedAccount
from offramp.services.chain_service import SignedTransfer, TransferReceipt
from offramp.services.gasless_service import SignedExecution
from offramp.services.orchestrator import OffRampOrchestrator
from offramp.services.settlement_executor import SettlementExecutor
from offramp.services.store import SagaStore
from offramp.services.webhook_reconciler import WebhookReconciler

WEBHOOK_SECRET = "test-webhook-secret"
RETURN_ADDRESS = "0x" + "11" * 20
RECEIVE_ADDRESS = "0x" + "ab" * 20
SETTLEMENT_WALLET = "0x" + "22" * 20
USER_ADDRESS = "0x0" + "4" * 63


def make_request(**overrides) -> OffRampRequest:
    data = {
        "swapId": "swap-1",
        "token": "USDC",
        "amount": "100",
        "fiatCurrency": "NGN",
        "bankCode": "GTBINGLA",
        "accountNumber": "0123456789",
        "accountName": "Ada Obi",
        "userAddress": USER_ADDRESS,
        "destinationFiatAmount": "148500",
    }
    data.update(overrides)
    return OffRampRequest.model_validate(data)


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            await self.on_sleep()


class FakeLayerSwap:
    """Bridge that reports ``statuses`` in order, repeating the last one."""

    def __init__(self):
        self.statuses = ["user_transfer_pending", "completed"]
        self.calls = 0
        self.quote = {
            "receive_amount": "99.5",
            "min_receive_amount": "99.0",
            "blockchain_fee": "0.25",
            "service_fee": "0.25",
            "total_fee": "0.5",
        }
        self.deposit_actions = [{
            "type": "transfer",
            "to_address": "0x" + "7" * 64,
            "amount": "100",
            "call_data": json.dumps([{
                "contractAddress": "0x" + "5" * 64,
                "entrypoint": "transfer",
                "calldata": ["0x" + "7" * 64, "100000000", "0"],
            }]),
        }]

    async def get_swap(self, swap_id: str):
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        return parse_swap_envelope({
            "data": {
                "swap": {"id": swap_id, "status": status},
                "quote": self.quote,
                "deposit_actions": self.deposit_actions,
            }
        })

    async def aclose(self) -> None:
        pass


class FakePaycrest:
    """Payout provider reporting ``order_statuses`` in order, repeating the last one."""

    def __init__(self):
        self.rate = Decimal("1500")
        self.sender_fee = Decimal("0.5")
        self.transaction_fee = Decimal("0.25")
        self.order_statuses = ["settled"]
        self.verify_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.rate_requests: List[Decimal] = []
        self.created: List[dict] = []
        self.order_calls = 0

    async def verify_account(self, institution: str, account_identifier: str) -> VerifiedAccount:
        if self.verify_error is not None:
            raise self.verify_error
        return VerifiedAccount(
            institution=institution,
            account_identifier=account_identifier,
            account_name="ADA OBI",
        )

    async def get_rate(self, token: str, amount: Decimal, currency: str) -> PayoutRate:
        self.rate_requests.append(amount)
        return PayoutRate(rate=self.rate)

    async def create_order(self, amount, token, rate, recipient, return_address, reference) -> PayoutOrder:
        if self.create_error is not None:
            error, self.create_error = self.create_error, None
            raise error
        self.created.append({
            "amount": amount,
            "token": token,
            "rate": rate,
            "recipient": recipient,
            "return_address": return_address,
            "reference": reference,
        })
        return PayoutOrder(
            id="order-1",
            receive_address=RECEIVE_ADDRESS,
            sender_fee=self.sender_fee,
            transaction_fee=self.transaction_fee,
            amount=amount,
            reference=reference,
        )

    async def get_order(self, order_id: str) -> PayoutOrderState:
        status = self.order_statuses[min(self.order_calls, len(self.order_statuses) - 1)]
        self.order_calls += 1
        return PayoutOrderState(id=order_id, status=PayoutOrderStatus(status))

    async def get_institutions(self, currency: str):
        return []

    async def aclose(self) -> None:
        pass


class FakeGasless:
    def __init__(self):
        self.compatible = True
        self.submit_error: Optional[Exception] = None
        self.tx_hash = "0x" + "5a" * 32
        self.prepared: List[str] = []
        self.submitted: List[SignedExecution] = []

    async def prepare_execution(self, account_address: str, calls) -> SignedExecution:
        if not self.compatible:
            raise SponsorshipIneligible("Account not compatible with gasless transactions")
        self.prepared.append(account_address)
        return SignedExecution(
            user_address=account_address,
            typed_data={"calls": [call.as_payload() for call in calls]},
            signature=["0x1", "0x2"],
        )

    async def submit(self, execution: SignedExecution) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(execution)
        return self.tx_hash

    async def aclose(self) -> None:
        pass


class FakeChain:
    """Settlement chain that signs sequential nonces and confirms instantly."""

    def __init__(self, decimals: int = 6):
        self.decimals = decimals
        self.account = object()
        self.address = SETTLEMENT_WALLET
        self.signed: List[SignedTransfer] = []
        self.sent: List[SignedTransfer] = []
        self.sign_error: Optional[Exception] = None
        self.broadcast_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.receipt_status = 1

    async def token_decimals(self, token_address: str) -> int:
        return self.decimals

    async def sign_transfer(self, token_address: str, to_address: str, amount_base_units: int) -> SignedTransfer:
        if self.sign_error is not None:
            raise self.sign_error
        nonce = len(self.signed)
        signed = SignedTransfer(tx_hash=f"0x{nonce + 1:064x}", raw_transaction=b"raw", nonce=nonce)
        self.signed.append(signed)
        return signed

    async def broadcast(self, signed: SignedTransfer) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.sent.append(signed)
        return signed.tx_hash

    async def wait_for_confirmation(self, tx_hash: str) -> TransferReceipt:
        if self.confirm_error is not None:
            raise self.confirm_error
        return TransferReceipt(tx_hash=tx_hash, status=self.receipt_status, block_number=100)


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Fresh file-backed SQLite database per test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'offramp_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SagaStore:
    return SagaStore(session_factory)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        SETTLEMENT_RETURN_ADDRESS=RETURN_ADDRESS,
        PAYCREST_WEBHOOK_SECRET=WEBHOOK_SECRET,
        RETRY_BASE_DELAY=0.0,
        VERIFY_RECIPIENT_ACCOUNT=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def layerswap() -> FakeLayerSwap:
    return FakeLayerSwap()


@pytest.fixture
def paycrest() -> FakePaycrest:
    return FakePaycrest()


@pytest.fixture
def gasless() -> FakeGasless:
    return FakeGasless()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def reconciler(store) -> WebhookReconciler:
    return WebhookReconciler(store, secret=WEBHOOK_SECRET)


@pytest.fixture
def executor(chain, store) -> SettlementExecutor:
    return SettlementExecutor(chain, store)


@pytest.fixture
def orchestrator(layerswap, paycrest, gasless, executor, reconciler, store, clock, test_settings):
    return OffRampOrchestrator(
        layerswap=layerswap,
        paycrest=paycrest,
        gasless=gasless,
        executor=executor,
        reconciler=reconciler,
        store=store,
        polls=PollRegistry(sleep=clock.sleep, clock=clock),
        config=test_settings,
    )


@pytest.fixture
async def client(store, reconciler, orchestrator, layerswap, paycrest, chain) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client over the ASGI app with the runtime replaced by fakes.
    """
    app.state.store = store
    app.state.reconciler = reconciler
    app.state.orchestrator = orchestrator
    app.state.layerswap = layerswap
    app.state.paycrest = paycrest
    app.state.settlement_chain = chain

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
