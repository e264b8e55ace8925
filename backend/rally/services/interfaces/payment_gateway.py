"""
Payment gateway interface.

The engine only relies on this contract; StripeGateway is the production
implementation and tests substitute an in-memory fake. Every method raises
PaymentGatewayError on failure. Cancellation is a return value.
"""

from abc import ABC, abstractmethod
from typing import Optional

from rally.schemas.checkout import IntentRequest
from rally.schemas.payment import ConfirmStatus, GatewayIntent, GatewayPayment, HostedCheckout, WebhookEvent


class PaymentGateway(ABC):

    @abstractmethod
    async def create_intent(self, request: IntentRequest) -> GatewayIntent:
        """Create a payment intent for request.amount_minor. Returns its client secret."""
        pass

    @abstractmethod
    async def confirm_payment(
        self,
        payment_ref: str,
        payment_method_id: str,
        return_url: Optional[str] = None,
    ) -> ConfirmStatus:
        """Confirm an existing intent with a card or wallet payment method."""
        pass

    @abstractmethod
    async def create_hosted_checkout(
        self,
        request: IntentRequest,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckout:
        """Create a gateway-hosted checkout page for the same amounts."""
        pass

    @abstractmethod
    async def retrieve_payment(self, payment_ref: str) -> GatewayPayment:
        """Read back the gateway's view of a payment (intent or checkout session)."""
        pass

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify a webhook signature and extract the confirmed payment, if any."""
        pass
