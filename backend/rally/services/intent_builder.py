"""
Builds gateway-ready payment intent requests and the fee preview.

The processing fee is always computed on the ORIGINAL ticket price, even
when a reward lowers what the buyer pays for the ticket itself. Both the
preview shown in checkout and the request sent to the gateway come out of
_quote(), which is the only place that combines price and fee, so every
rail (card, wallet, payment sheet, redirect) charges what was previewed.
"""

from decimal import Decimal
from typing import Optional

from rally.core.config import Settings, get_settings
from rally.core.errors import InvalidIntentState
from rally.schemas.checkout import FeeBreakdown, IntentRequest, PurchaseIntent
from rally.services.pricing_service import calculate_price, round2, to_minor_units

TICKET_METADATA_TYPE = "event_ticket"


def compute_fees(
    ticket_price: Decimal,
    original_price: Decimal,
    discount_amount: Decimal,
    fee_percent: Decimal,
    fee_fixed: Decimal,
) -> FeeBreakdown:
    processing_fee = round2(round2(original_price) * fee_percent + fee_fixed)
    total = round2(round2(ticket_price) + processing_fee)
    return FeeBreakdown(
        ticket_price=round2(ticket_price),
        original_price=round2(original_price),
        discount_amount=round2(discount_amount),
        processing_fee=processing_fee,
        total_amount=total,
        club_receives=round2(ticket_price),
    )


class PurchaseIntentBuilder:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _quote(self, intent: PurchaseIntent) -> FeeBreakdown:
        reward = intent.applied_reward.reward if intent.applied_reward else None
        quote = calculate_price(intent.original_price, reward)
        return compute_fees(
            ticket_price=quote.discounted_price,
            original_price=intent.original_price,
            discount_amount=quote.discount_amount,
            fee_percent=self.settings.PROCESSING_FEE_PERCENT,
            fee_fixed=self.settings.PROCESSING_FEE_FIXED,
        )

    def preview_fees(self, intent: PurchaseIntent) -> Optional[FeeBreakdown]:
        """Fee breakdown shown before payment. Free tickets have none."""
        if intent.is_free:
            return None
        return self._quote(intent)

    def build(self, intent: PurchaseIntent) -> IntentRequest:
        """
        Request for the gateway's intent-creation and hosted-checkout calls.
        Carries both the discounted and the original price.
        """
        if intent.is_free:
            raise InvalidIntentState("Free tickets are claimed without a payment intent")

        fees = self._quote(intent)
        applied = intent.applied_reward
        metadata = {
            "type": TICKET_METADATA_TYPE,
            "event_id": str(intent.event_id),
            "club_id": str(intent.club_id),
            "user_id": intent.user_id,
            "intent_id": intent.id,
            "ticket_price": f"{fees.ticket_price:.2f}",
            "original_price": f"{fees.original_price:.2f}",
            "discount_amount": f"{fees.discount_amount:.2f}",
            "processing_fee": f"{fees.processing_fee:.2f}",
            "club_amount": f"{fees.club_receives:.2f}",
            "reward_id": str(applied.reward.id) if applied else "",
            "credits_required": str(applied.reward.credits_required) if applied else "0",
        }
        return IntentRequest(
            event_id=intent.event_id,
            currency=intent.currency.lower(),
            ticket_price=fees.ticket_price,
            original_price=fees.original_price,
            amount_minor=to_minor_units(fees.total_amount),
            description=f"Ticket for {intent.event_title or 'event'}",
            fees=fees,
            metadata=metadata,
        )
