"""
Hosted checkout by redirect.

Control leaves the app for the gateway's checkout page. The rail reports
PENDING with the URL to open; the outcome comes back later through the
success deep link or the checkout.session.completed webhook.
"""

from typing import Optional

from rally.core.config import Settings, get_settings
from rally.core.errors import PaymentGatewayError
from rally.schemas.payment import RailOutcome, RailResult
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail, RailContext


class RedirectRail(PaymentRail):
    name = "redirect"
    requires_intent = False

    def __init__(self, gateway: PaymentGateway, settings: Optional[Settings] = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _return_urls(self, event_id: int) -> tuple[str, str]:
        # {CHECKOUT_SESSION_ID} is filled in by the gateway, so only event_id is substituted
        success = self.settings.CHECKOUT_SUCCESS_URL.replace("{event_id}", str(event_id))
        cancel = self.settings.CHECKOUT_CANCEL_URL.replace("{event_id}", str(event_id))
        return success, cancel

    async def run(self, context: RailContext) -> RailResult:
        success_url, cancel_url = self._return_urls(context.intent.event_id)
        try:
            session = await self.gateway.create_hosted_checkout(context.request, success_url, cancel_url)
        except PaymentGatewayError as e:
            return RailResult(rail=self.name, outcome=RailOutcome.FAILED, error=e.message, error_code=e.code)

        return RailResult(
            rail=self.name,
            outcome=RailOutcome.PENDING,
            payment_ref=session.session_id,
            checkout_url=session.checkout_url,
        )
