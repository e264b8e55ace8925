"""
Tests for the payment rail dispatcher and the platform rail factory.
"""

import asyncio
from decimal import Decimal

import pytest

from conftest import FakeGateway, FakePaymentSheet, FakeWallet
from rally.core.errors import InvalidIntentState, PaymentGatewayError, RailInProgress, RailUnavailable
from rally.schemas.checkout import AppliedReward, IntentStatus, PurchaseIntent, RewardTerms
from rally.schemas.payment import ConfirmStatus, RailOutcome, RailResult
from rally.services.interfaces.payment_rail import PaymentRail, RailContext
from rally.services.payment_dispatcher import DispatchState, PaymentRailDispatcher
from rally.services.rail_factory import build_rails
from rally.services.rails import ApplePayRail, CardRail, GooglePayRail, PaymentSheetRail, RedirectRail


def ten_percent_intent() -> PurchaseIntent:
    reward = RewardTerms(
        id=7, club_id=1, name="10% off", type="event_discount",
        credits_required=50, discount_percent=Decimal("10"),
    )
    return PurchaseIntent(
        event_id=3,
        club_id=1,
        user_id="user_1",
        event_title="Summer Meetup",
        currency="usd",
        original_price=Decimal("20.00"),
        applied_reward=AppliedReward(reward=reward, discount_amount=Decimal("2.00")),
        discounted_price=Decimal("18.00"),
        is_free=False,
    )


class BlockingRail(PaymentRail):
    """Holds the rail open until released, like a sheet left on screen."""

    name = "card"

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, context: RailContext) -> RailResult:
        self.entered.set()
        await self.release.wait()
        return RailResult(rail=self.name, outcome=RailOutcome.SUCCEEDED, payment_ref=context.gateway_intent.payment_ref)


@pytest.mark.asyncio
async def test_card_success():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "card", "pm_card_visa")

    assert result.outcome == RailOutcome.SUCCEEDED
    assert dispatcher.state == DispatchState.SUCCEEDED
    assert intent.status == IntentStatus.SETTLING
    assert intent.payment_ref == "pi_test_1"
    # 18.00 ticket + fee on 20.00 (1.49)
    assert gateway.intents["pi_test_1"].amount_minor == 1949


@pytest.mark.asyncio
async def test_card_cancel_keeps_reward_and_allows_retry():
    gateway = FakeGateway()
    gateway.confirm_status = ConfirmStatus.CANCELLED
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "card", "pm_card_visa")

    assert result.outcome == RailOutcome.CANCELLED
    assert dispatcher.state == DispatchState.CANCELLED
    assert intent.status == IntentStatus.AWAITING_PAYMENT
    assert intent.applied_reward is not None
    assert intent.discounted_price == Decimal("18.00")

    gateway.confirm_status = ConfirmStatus.SUCCEEDED
    retry = await dispatcher.start(intent, "card", "pm_card_visa")
    assert retry.outcome == RailOutcome.SUCCEEDED


@pytest.mark.asyncio
async def test_card_decline_surfaces_message():
    gateway = FakeGateway()
    gateway.confirm_error = PaymentGatewayError("Your card was declined.", actionable=True, code="card_declined")
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "card", "pm_card_visa")

    assert result.outcome == RailOutcome.FAILED
    assert result.error == "Your card was declined."
    assert result.error_code == "card_declined"
    assert intent.status == IntentStatus.FAILED
    assert dispatcher.state == DispatchState.FAILED


@pytest.mark.asyncio
async def test_non_actionable_gateway_error_is_generic():
    gateway = FakeGateway()
    gateway.confirm_error = PaymentGatewayError("rate limited by upstream", code="rate_limit")
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})

    result = await dispatcher.start(ten_percent_intent(), "card", "pm_card_visa")

    assert result.error == PaymentGatewayError.GENERIC_MESSAGE


@pytest.mark.asyncio
async def test_card_without_payment_method_fails():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})

    result = await dispatcher.start(ten_percent_intent(), "card")

    assert result.outcome == RailOutcome.FAILED
    assert result.error_code == "payment_method_missing"
    assert gateway.confirm_calls == 0


@pytest.mark.asyncio
async def test_processing_payment_is_pending():
    gateway = FakeGateway()
    gateway.confirm_status = ConfirmStatus.PROCESSING
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "card", "pm_card_threeds")

    assert result.outcome == RailOutcome.PENDING
    assert intent.status == IntentStatus.AWAITING_PAYMENT


@pytest.mark.asyncio
async def test_intent_creation_rejected():
    gateway = FakeGateway()
    gateway.create_error = PaymentGatewayError("amount too small", code="amount_too_small")
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()

    with pytest.raises(PaymentGatewayError):
        await dispatcher.start(intent, "card", "pm_card_visa")

    assert dispatcher.state == DispatchState.FAILED
    assert intent.status == IntentStatus.FAILED


@pytest.mark.asyncio
async def test_second_start_while_in_progress_is_rejected():
    gateway = FakeGateway()
    rail = BlockingRail()
    dispatcher = PaymentRailDispatcher(gateway, {"card": rail})
    intent = ten_percent_intent()

    first = asyncio.create_task(dispatcher.start(intent, "card", "pm_card_visa"))
    await rail.entered.wait()

    with pytest.raises(RailInProgress):
        await dispatcher.start(intent, "card", "pm_card_visa")

    rail.release.set()
    result = await first
    assert result.outcome == RailOutcome.SUCCEEDED
    assert len(gateway.intents) == 1


@pytest.mark.asyncio
async def test_start_after_success_is_rejected():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})
    intent = ten_percent_intent()
    await dispatcher.start(intent, "card", "pm_card_visa")

    with pytest.raises(InvalidIntentState):
        await dispatcher.start(intent, "card", "pm_card_visa")


@pytest.mark.asyncio
async def test_unknown_rail():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"card": CardRail(gateway)})

    with pytest.raises(RailUnavailable):
        await dispatcher.start(ten_percent_intent(), "apple_pay")
    assert dispatcher.state == DispatchState.NOT_STARTED
    assert gateway.intents == {}


@pytest.mark.asyncio
async def test_apple_pay_presents_total_then_confirms():
    gateway = FakeGateway()
    wallet = FakeWallet()
    dispatcher = PaymentRailDispatcher(gateway, {"apple_pay": ApplePayRail(gateway, wallet)})

    result = await dispatcher.start(ten_percent_intent(), "apple_pay")

    assert result.outcome == RailOutcome.SUCCEEDED
    assert wallet.presented == [("pi_test_1_secret", Decimal("19.49"), "usd")]
    assert gateway.confirm_calls == 1


@pytest.mark.asyncio
async def test_wallet_dismissed_is_cancelled():
    gateway = FakeGateway()
    wallet = FakeWallet(outcome=RailOutcome.CANCELLED, wallet="google_pay")
    dispatcher = PaymentRailDispatcher(gateway, {"google_pay": GooglePayRail(gateway, wallet)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "google_pay")

    assert result.outcome == RailOutcome.CANCELLED
    assert intent.status == IntentStatus.AWAITING_PAYMENT
    assert gateway.confirm_calls == 0


@pytest.mark.asyncio
async def test_wallet_failure():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"apple_pay": ApplePayRail(gateway, FakeWallet(RailOutcome.FAILED))})

    result = await dispatcher.start(ten_percent_intent(), "apple_pay")

    assert result.outcome == RailOutcome.FAILED
    assert result.error_code == "wallet_error"


@pytest.mark.asyncio
async def test_payment_sheet_gets_previewed_fees():
    gateway = FakeGateway()
    sheet = FakePaymentSheet()
    dispatcher = PaymentRailDispatcher(gateway, {"payment_sheet": PaymentSheetRail(sheet)})

    result = await dispatcher.start(ten_percent_intent(), "payment_sheet")

    assert result.outcome == RailOutcome.SUCCEEDED
    client_secret, fees = sheet.presented[0]
    assert client_secret == "pi_test_1_secret"
    assert fees.total_amount == Decimal("19.49")
    assert fees.processing_fee == Decimal("1.49")


@pytest.mark.asyncio
async def test_payment_sheet_failure_message():
    gateway = FakeGateway()
    sheet = FakePaymentSheet(RailOutcome.FAILED, error="Card expired")
    dispatcher = PaymentRailDispatcher(gateway, {"payment_sheet": PaymentSheetRail(sheet)})

    result = await dispatcher.start(ten_percent_intent(), "payment_sheet")

    assert result.outcome == RailOutcome.FAILED
    assert result.error == "Card expired"


@pytest.mark.asyncio
async def test_redirect_returns_checkout_url_without_intent():
    gateway = FakeGateway()
    dispatcher = PaymentRailDispatcher(gateway, {"redirect": RedirectRail(gateway)})
    intent = ten_percent_intent()

    result = await dispatcher.start(intent, "redirect")

    assert result.outcome == RailOutcome.PENDING
    assert result.checkout_url == "https://checkout.test/cs_test_1"
    assert intent.payment_ref == "cs_test_1"
    assert intent.status == IntentStatus.AWAITING_PAYMENT
    assert dispatcher.state == DispatchState.PENDING
    assert gateway.intents == {}

    session = gateway.sessions["cs_test_1"]
    assert session["request"].amount_minor == 1949
    assert "event_id=3" in session["success_url"]
    assert "{CHECKOUT_SESSION_ID}" in session["success_url"]
    assert "event_id=3" in session["cancel_url"]


def test_platform_rails():
    gateway = FakeGateway()
    wallet = FakeWallet()
    sheet = FakePaymentSheet()

    assert sorted(build_rails("ios", gateway, wallet, sheet)) == ["apple_pay", "card", "payment_sheet"]
    assert sorted(build_rails("android", gateway, wallet, sheet)) == ["card", "google_pay", "payment_sheet"]
    assert sorted(build_rails("web", gateway)) == ["redirect"]
    assert sorted(build_rails("server", gateway)) == ["card", "redirect"]


def test_native_rails_need_presenters():
    assert sorted(build_rails("ios", FakeGateway())) == ["card"]


def test_unknown_platform():
    with pytest.raises(ValueError):
        build_rails("windows_phone", FakeGateway())
