"""
Pytest fixtures for test database, client, payment gateway and authentication.

Each test gets freshly created tables (SQLite in memory unless
TEST_DATABASE_URL points elsewhere) and an in-memory payment gateway, so
nothing here talks to Stripe or Redis.
"""

import json
import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT_PLATFORM", "server")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rally.api.deps import get_payment_gateway
from rally.core.errors import InvalidWebhookSignature, PaymentGatewayError
from rally.core.security import create_access_token
from rally.db.base import Base
from rally.db.session import get_db
from rally.infrastructure.stripe_gateway import confirmation_from_metadata, webhook_event_from_payload
from rally.main import app
from rally.models import Club, CreditBalance, Event, Reward
from rally.models.reward import EVENT_DISCOUNT, EVENT_FREE_ADMISSION, STORE_DISCOUNT
from rally.schemas.checkout import IntentRequest
from rally.schemas.payment import (
    ConfirmStatus,
    GatewayIntent,
    GatewayPayment,
    HostedCheckout,
    PresentResult,
    RailOutcome,
)
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.presenters import PaymentSheetPresenter, WalletPresenter

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")
TEST_USER_ID = "user_1"
WEBHOOK_SIGNATURE = "valid-signature"

if TEST_DATABASE_URL.startswith("sqlite"):
    # One shared in-memory database for every session in a test
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    test_engine = create_async_engine(TEST_DATABASE_URL)
TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


class FakeGateway(PaymentGateway):
    """In-memory stand-in for Stripe that records what it was asked to do."""

    def __init__(self):
        self.intents: dict[str, IntentRequest] = {}
        self.sessions: dict[str, dict] = {}
        self.session_intents: dict[str, str] = {}
        self.paid: set[str] = set()
        self.confirm_status = ConfirmStatus.SUCCEEDED
        self.confirm_error: Optional[PaymentGatewayError] = None
        self.create_error: Optional[PaymentGatewayError] = None
        self.confirm_calls = 0

    async def create_intent(self, request: IntentRequest) -> GatewayIntent:
        if self.create_error:
            raise self.create_error
        ref = f"pi_test_{len(self.intents) + 1}"
        self.intents[ref] = request
        return GatewayIntent(payment_ref=ref, client_secret=f"{ref}_secret", fees=request.fees)

    async def confirm_payment(self, payment_ref, payment_method_id, return_url=None) -> ConfirmStatus:
        self.confirm_calls += 1
        if self.confirm_error:
            raise self.confirm_error
        if self.confirm_status == ConfirmStatus.SUCCEEDED:
            self.paid.add(payment_ref)
        return self.confirm_status

    async def create_hosted_checkout(self, request, success_url, cancel_url) -> HostedCheckout:
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {"request": request, "success_url": success_url, "cancel_url": cancel_url}
        return HostedCheckout(session_id=session_id, checkout_url=f"https://checkout.test/{session_id}")

    def complete_checkout(self, session_id: str) -> str:
        """Buyer pays on the hosted page. Returns the payment intent it created."""
        ref = f"pi_checkout_{len(self.session_intents) + 1}"
        self.intents[ref] = self.sessions[session_id]["request"]
        self.session_intents[session_id] = ref
        self.paid.add(ref)
        return ref

    async def retrieve_payment(self, payment_ref: str) -> GatewayPayment:
        ref = self.session_intents.get(payment_ref, payment_ref)
        request = self.intents.get(ref)
        if request is None:
            raise PaymentGatewayError(f"No such payment: {payment_ref}")
        succeeded = ref in self.paid
        return GatewayPayment(
            payment_ref=ref,
            succeeded=succeeded,
            status="succeeded" if succeeded else "requires_payment_method",
            confirmation=confirmation_from_metadata(ref, request.metadata, request.amount_minor) if succeeded else None,
        )

    def parse_webhook(self, payload: bytes, signature: str):
        if signature != WEBHOOK_SIGNATURE:
            raise InvalidWebhookSignature()
        return webhook_event_from_payload(json.loads(payload))

    def webhook_payload(self, payment_ref: str, event_type: str = "payment_intent.succeeded") -> bytes:
        request = self.intents[payment_ref]
        return json.dumps({
            "type": event_type,
            "data": {
                "object": {
                    "id": payment_ref,
                    "amount": request.amount_minor,
                    "amount_received": request.amount_minor,
                    "metadata": request.metadata,
                }
            },
        }).encode()


class FakeWallet(WalletPresenter):
    def __init__(self, outcome: RailOutcome = RailOutcome.SUCCEEDED, wallet: str = "apple_pay"):
        self.wallet = wallet
        self.outcome = outcome
        self.presented: list[tuple] = []

    async def present(self, client_secret, amount, currency) -> PresentResult:
        self.presented.append((client_secret, amount, currency))
        if self.outcome == RailOutcome.SUCCEEDED:
            return PresentResult(outcome=self.outcome, payment_method_id=f"pm_{self.wallet}")
        if self.outcome == RailOutcome.FAILED:
            return PresentResult(outcome=self.outcome, error="Wallet unavailable", error_code="wallet_error")
        return PresentResult(outcome=self.outcome)


class FakePaymentSheet(PaymentSheetPresenter):
    def __init__(self, outcome: RailOutcome = RailOutcome.SUCCEEDED, error: Optional[str] = None):
        self.outcome = outcome
        self.error = error
        self.presented = []

    async def present(self, client_secret, fees) -> PresentResult:
        self.presented.append((client_secret, fees))
        return PresentResult(outcome=self.outcome, error=self.error)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, gateway: FakeGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    """Authorization headers with a bearer token for TEST_USER_ID."""
    token = create_access_token(data={"sub": TEST_USER_ID})
    return {"Authorization": f"Bearer {token}"}


async def seed(*rows):
    """
    Insert rows through their own session. The returned objects are detached,
    so a rollback inside the code under test never expires them.
    """
    async with TestSessionLocal() as session:
        session.add_all(rows)
        await session.commit()
        for row in rows:
            await session.refresh(row)
    return rows[0] if len(rows) == 1 else rows


@pytest_asyncio.fixture
async def club(db_session: AsyncSession) -> Club:
    return await seed(Club(name="Trail Runners", payouts_enabled=True))


async def _add_event(club: Club, **fields) -> Event:
    return await seed(Event(club_id=club.id, **fields))


@pytest_asyncio.fixture
async def paid_event(db_session: AsyncSession, club: Club) -> Event:
    """A $20.00 event."""
    return await _add_event(club, title="Summer Meetup", ticket_price=Decimal("20.00"), currency="usd")


@pytest_asyncio.fixture
async def cheap_event(db_session: AsyncSession, club: Club) -> Event:
    """A $10.00 event."""
    return await _add_event(club, title="Coffee Run", ticket_price=Decimal("10.00"), currency="usd")


@pytest_asyncio.fixture
async def free_event(db_session: AsyncSession, club: Club) -> Event:
    return await _add_event(club, title="Open Practice", ticket_price=Decimal("0.00"), currency="usd")


@pytest_asyncio.fixture
async def rewards(db_session: AsyncSession, club: Club) -> dict[str, Reward]:
    """The club's reward catalogue, keyed by a short name."""
    catalogue = {
        "ten_percent": Reward(
            club_id=club.id, name="10% off", type=EVENT_DISCOUNT,
            credits_required=50, discount_percent=Decimal("10"),
        ),
        "free_admission": Reward(
            club_id=club.id, name="Free entry", type=EVENT_FREE_ADMISSION, credits_required=100,
        ),
        "twenty_five_off": Reward(
            club_id=club.id, name="$25 off", type=EVENT_DISCOUNT,
            credits_required=30, discount_amount=Decimal("25.00"),
        ),
        "store": Reward(
            club_id=club.id, name="Hoodie discount", type=STORE_DISCOUNT,
            credits_required=10, discount_percent=Decimal("20"),
        ),
        "retired": Reward(
            club_id=club.id, name="Old promo", type=EVENT_DISCOUNT,
            credits_required=5, discount_amount=Decimal("1.00"), is_active=False,
        ),
    }
    await seed(*catalogue.values())
    return catalogue


async def give_credits(club: Club, amount: int, user_id: str = TEST_USER_ID) -> CreditBalance:
    return await seed(CreditBalance(user_id=user_id, club_id=club.id, available_credits=amount, version=1))
