"""
Checkout session: one buyer buying one ticket.

Ties the steps together in the order the app walks through them:
open -> list/apply/remove rewards -> preview fees -> pay -> settle.

The purchase intent lives only as long as the session. Anything durable
(the gateway intent, the settlement record, ledger entries) is written by
the services this module calls.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.config import Settings, get_settings
from rally.core.errors import AlreadyAttending, InvalidIntentState, PaymentGatewayError
from rally.core.logging import bind_checkout_context, get_logger
from rally.core.metrics import purchase_outcomes
from rally.schemas.checkout import EligibleReward, FeeBreakdown, IntentStatus, PurchaseIntent
from rally.schemas.payment import PaymentConfirmation, RailOutcome
from rally.schemas.settlement import CheckoutOutcome
from rally.services import attendance_service, catalog_service
from rally.services.intent_builder import PurchaseIntentBuilder
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail
from rally.services.payment_dispatcher import PaymentRailDispatcher
from rally.services.pricing_service import round2
from rally.services.purchase_guard import PurchaseGuard
from rally.services.redemption_service import RedemptionSelector
from rally.services.settlement_service import SOURCE_CLIENT, SettlementCoordinator
from rally.services.settlement_throttle import SettlementThrottle

logger = get_logger(__name__)


def confirmation_from_intent(intent: PurchaseIntent, fees: FeeBreakdown) -> PaymentConfirmation:
    applied = intent.applied_reward
    return PaymentConfirmation(
        payment_ref=intent.payment_ref,
        event_id=intent.event_id,
        club_id=intent.club_id,
        user_id=intent.user_id,
        reward_id=applied.reward.id if applied else None,
        credits_required=applied.reward.credits_required if applied else 0,
        original_price=fees.original_price,
        discount_amount=fees.discount_amount,
        amount_paid=fees.total_amount,
    )


class CheckoutSession:
    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        rails: dict[str, PaymentRail],
        intent: PurchaseIntent,
        settings: Optional[Settings] = None,
        throttle: Optional[SettlementThrottle] = None,
        guard: Optional[PurchaseGuard] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.intent = intent
        self.builder = PurchaseIntentBuilder(self.settings)
        self.selector = RedemptionSelector(db)
        self.dispatcher = PaymentRailDispatcher(gateway, rails, self.builder)
        self.coordinator = SettlementCoordinator(db, throttle=throttle, settings=self.settings)
        self.guard = guard or PurchaseGuard(self.settings)

    @classmethod
    async def open(
        cls,
        db: AsyncSession,
        gateway: PaymentGateway,
        rails: dict[str, PaymentRail],
        event_id: int,
        user_id: str,
        settings: Optional[Settings] = None,
        throttle: Optional[SettlementThrottle] = None,
        guard: Optional[PurchaseGuard] = None,
    ) -> "CheckoutSession":
        """Start checkout for event_id. Fails if the event is missing or the buyer is already in."""
        settings = settings or get_settings()
        event = await catalog_service.get_event(db, event_id)
        if await attendance_service.is_attending(db, event_id, user_id):
            raise AlreadyAttending()

        price = round2(event.ticket_price)
        intent = PurchaseIntent(
            event_id=event.id,
            club_id=event.club_id,
            user_id=user_id,
            event_title=event.title,
            currency=event.currency or settings.DEFAULT_CURRENCY,
            original_price=price,
            discounted_price=price,
            is_free=price == 0,
        )
        bind_checkout_context(intent_id=intent.id, event_id=event_id)
        logger.info("purchase_intent_opened", event_id=event_id, user_id=user_id, price=str(price))
        return cls(db, gateway, rails, intent, settings=settings, throttle=throttle, guard=guard)

    def available_rails(self) -> list[str]:
        return self.dispatcher.available_rails()

    async def list_eligible_rewards(self) -> list[EligibleReward]:
        return await self.selector.list_eligible(self.intent)

    async def apply_reward(self, reward_id: int) -> PurchaseIntent:
        return await self.selector.apply(self.intent, reward_id)

    def remove_reward(self) -> PurchaseIntent:
        return self.selector.remove(self.intent)

    def preview_fees(self) -> Optional[FeeBreakdown]:
        return self.builder.preview_fees(self.intent)

    async def _ensure_club_accepts_payments(self) -> None:
        club = await catalog_service.get_club(self.db, self.intent.club_id)
        if club is None or not club.payouts_enabled:
            raise PaymentGatewayError(
                "This club hasn't finished setting up payments yet.",
                code="payouts_disabled",
            )

    async def pay(self, rail_name: Optional[str] = None, payment_method_id: Optional[str] = None) -> CheckoutOutcome:
        """
        Free tickets are claimed directly; paid tickets go through the chosen rail
        and, on success, straight into settlement.
        """
        intent = self.intent
        if intent.status in (IntentStatus.SETTLING, IntentStatus.SETTLED):
            raise InvalidIntentState("This purchase has already been completed")

        if intent.is_free:
            intent.status = IntentStatus.SETTLING
            try:
                settlement = await self.coordinator.claim_free(intent)
            except Exception:
                intent.status = IntentStatus.FAILED
                purchase_outcomes.labels(outcome="failed").inc()
                raise
            intent.payment_ref = settlement.payment_ref
            intent.status = IntentStatus.SETTLED
            purchase_outcomes.labels(outcome="free_claimed").inc()
            return CheckoutOutcome(outcome="free_claimed", intent=intent, settlement=settlement)

        if not rail_name:
            raise InvalidIntentState("Choose a payment method to continue")

        await self._ensure_club_accepts_payments()

        # Sessions are per request, so the lock and the attendance re-check
        # are what stop a second charge for the same buyer and event.
        async with self.guard.hold(intent.event_id, intent.user_id, rail_name):
            if await attendance_service.is_attending(self.db, intent.event_id, intent.user_id):
                logger.warning("purchase_blocked_already_attending", intent_id=intent.id, event_id=intent.event_id)
                raise AlreadyAttending()

            result = await self.dispatcher.start(intent, rail_name, payment_method_id)

            if result.outcome == RailOutcome.SUCCEEDED:
                fees = self.builder.preview_fees(intent)
                settlement = await self.coordinator.settle_paid(confirmation_from_intent(intent, fees), SOURCE_CLIENT)
                # An incomplete settlement is finished by the webhook
                intent.status = IntentStatus.SETTLED if settlement.status == IntentStatus.SETTLED.value else IntentStatus.SETTLING
                purchase_outcomes.labels(outcome="settled").inc()
                return CheckoutOutcome(outcome="settled", intent=intent, rail_result=result, settlement=settlement)

        outcome = result.outcome.value
        purchase_outcomes.labels(outcome=outcome).inc()
        message = None
        if result.outcome == RailOutcome.CANCELLED:
            message = "Payment cancelled. Your reward is still applied."
        elif result.outcome == RailOutcome.FAILED:
            message = result.error or PaymentGatewayError.GENERIC_MESSAGE
        return CheckoutOutcome(outcome=outcome, intent=intent, rail_result=result, message=message)

    def close(self) -> None:
        """Discard the intent. Nothing durable is touched."""
        if self.intent.status in (IntentStatus.DRAFT, IntentStatus.AWAITING_PAYMENT, IntentStatus.FAILED):
            self.intent.status = IntentStatus.CANCELLED
        logger.info("checkout_closed", intent_id=self.intent.id, status=self.intent.status.value)
