"""
Gateway-hosted payment sheet. The sheet collects the method and confirms
the intent itself, so a single present call yields the outcome.
"""

from rally.schemas.payment import RailOutcome, RailResult
from rally.services.interfaces.payment_rail import PaymentRail, RailContext
from rally.services.interfaces.presenters import PaymentSheetPresenter


class PaymentSheetRail(PaymentRail):
    name = "payment_sheet"

    def __init__(self, presenter: PaymentSheetPresenter):
        self.presenter = presenter

    async def run(self, context: RailContext) -> RailResult:
        gateway_intent = context.gateway_intent
        presented = await self.presenter.present(gateway_intent.client_secret, gateway_intent.fees)
        return RailResult(
            rail=self.name,
            outcome=presented.outcome,
            payment_ref=gateway_intent.payment_ref,
            error=presented.error if presented.outcome == RailOutcome.FAILED else None,
            error_code=presented.error_code,
        )
