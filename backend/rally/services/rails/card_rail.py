"""
Direct card confirmation against the payment intent.
"""

from rally.core.errors import PaymentGatewayError
from rally.schemas.payment import ConfirmStatus, RailOutcome, RailResult
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail, RailContext

_CONFIRM_OUTCOMES = {
    ConfirmStatus.SUCCEEDED: RailOutcome.SUCCEEDED,
    ConfirmStatus.CANCELLED: RailOutcome.CANCELLED,
    # 3-D Secure and delayed methods finish asynchronously; the webhook settles them
    ConfirmStatus.PROCESSING: RailOutcome.PENDING,
}


async def confirm_with_gateway(
    gateway: PaymentGateway,
    rail: str,
    payment_ref: str,
    payment_method_id: str,
) -> RailResult:
    """Shared confirmation step for rails that end in a gateway confirm call."""
    try:
        status = await gateway.confirm_payment(payment_ref, payment_method_id)
    except PaymentGatewayError as e:
        return RailResult(
            rail=rail,
            outcome=RailOutcome.FAILED,
            payment_ref=payment_ref,
            error=e.message,
            error_code=e.code,
        )
    return RailResult(rail=rail, outcome=_CONFIRM_OUTCOMES[status], payment_ref=payment_ref)


class CardRail(PaymentRail):
    name = "card"

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def run(self, context: RailContext) -> RailResult:
        payment_ref = context.gateway_intent.payment_ref
        if not context.payment_method_id:
            return RailResult(
                rail=self.name,
                outcome=RailOutcome.FAILED,
                payment_ref=payment_ref,
                error="Please enter your card details.",
                error_code="payment_method_missing",
            )
        return await confirm_with_gateway(self.gateway, self.name, payment_ref, context.payment_method_id)
