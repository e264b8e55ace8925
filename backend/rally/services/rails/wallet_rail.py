"""
Native wallet rails: Apple Pay on iOS, Google Pay on Android.

Both present the wallet sheet for the intent's total, then confirm the
same intent with the token the wallet returned. The buyer can back out of
either step; that is a cancellation, not a failure.
"""

from rally.schemas.payment import RailOutcome, RailResult
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail, RailContext
from rally.services.interfaces.presenters import WalletPresenter
from rally.services.rails.card_rail import confirm_with_gateway


class WalletRail(PaymentRail):
    def __init__(self, gateway: PaymentGateway, presenter: WalletPresenter):
        self.gateway = gateway
        self.presenter = presenter

    async def run(self, context: RailContext) -> RailResult:
        gateway_intent = context.gateway_intent
        presented = await self.presenter.present(
            gateway_intent.client_secret,
            gateway_intent.fees.total_amount,
            context.request.currency,
        )

        if presented.outcome != RailOutcome.SUCCEEDED:
            return RailResult(
                rail=self.name,
                outcome=presented.outcome,
                payment_ref=gateway_intent.payment_ref,
                error=presented.error,
                error_code=presented.error_code,
            )

        return await confirm_with_gateway(
            self.gateway,
            self.name,
            gateway_intent.payment_ref,
            presented.payment_method_id,
        )


class ApplePayRail(WalletRail):
    name = "apple_pay"


class GooglePayRail(WalletRail):
    name = "google_pay"
