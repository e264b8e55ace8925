"""
Stripe adapter for the PaymentGateway interface.

The Stripe SDK is synchronous, so every call runs in the threadpool.
Payment references are always PaymentIntent ids: a hosted checkout is
resolved to the PaymentIntent it created, so the client confirmation and
both webhook types land on the same settlement record.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from rally.core.config import Settings, get_settings
from rally.core.errors import InvalidWebhookSignature, PaymentGatewayError
from rally.core.logging import get_logger
from rally.schemas.checkout import IntentRequest
from rally.schemas.payment import (
    ConfirmStatus,
    GatewayIntent,
    GatewayPayment,
    HostedCheckout,
    PaymentConfirmation,
    WebhookEvent,
)
from rally.services.intent_builder import TICKET_METADATA_TYPE
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.pricing_service import to_minor_units

logger = get_logger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
CHECKOUT_COMPLETED = "checkout.session.completed"

_CONFIRM_STATUS = {
    "succeeded": ConfirmStatus.SUCCEEDED,
    "canceled": ConfirmStatus.CANCELLED,
    "processing": ConfirmStatus.PROCESSING,
    "requires_action": ConfirmStatus.PROCESSING,
}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or a plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _metadata(obj: Any) -> dict[str, str]:
    meta = _field(obj, "metadata", {})
    return {key: meta[key] for key in meta.keys()}


def _decimal(value: Optional[str], default: str = "0") -> Decimal:
    try:
        return Decimal(value or default)
    except InvalidOperation:
        return Decimal(default)


def confirmation_from_metadata(
    payment_ref: str,
    metadata: dict[str, str],
    amount_minor: int,
) -> Optional[PaymentConfirmation]:
    """
    Rebuild a ticket confirmation from payment metadata.
    Returns None for payments that are not event tickets.
    """
    kind = metadata.get("type") or TICKET_METADATA_TYPE
    if kind != TICKET_METADATA_TYPE:
        return None
    if not metadata.get("event_id") or not metadata.get("user_id") or not metadata.get("club_id"):
        logger.warning("payment_metadata_incomplete", payment_ref=payment_ref, keys=sorted(metadata))
        return None

    reward_id = metadata.get("reward_id")
    return PaymentConfirmation(
        payment_ref=payment_ref,
        event_id=int(metadata["event_id"]),
        club_id=int(metadata["club_id"]),
        user_id=metadata["user_id"],
        reward_id=int(reward_id) if reward_id else None,
        credits_required=int(metadata.get("credits_required") or 0),
        original_price=_decimal(metadata.get("original_price"), metadata.get("ticket_price") or "0"),
        discount_amount=_decimal(metadata.get("discount_amount")),
        amount_paid=Decimal(amount_minor) / 100,
    )


def _gateway_error(exc: "stripe.StripeError") -> PaymentGatewayError:
    # Card declines carry a message written for the buyer
    actionable = isinstance(exc, stripe.CardError)
    message = exc.user_message or str(exc)
    logger.warning("stripe_error", error_type=type(exc).__name__, code=exc.code, message=str(exc))
    return PaymentGatewayError(message, actionable=actionable, code=exc.code)


class StripeGateway(PaymentGateway):
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.api_key = self.settings.STRIPE_SECRET_KEY
        self.webhook_secret = self.settings.STRIPE_WEBHOOK_SECRET

    async def _call(self, fn, *args, **kwargs):
        if not self.api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not configured")
        try:
            return await run_in_threadpool(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            raise _gateway_error(e)

    async def create_intent(self, request: IntentRequest) -> GatewayIntent:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=request.amount_minor,
            currency=request.currency,
            description=request.description,
            metadata=request.metadata,
            automatic_payment_methods={"enabled": True},
        )
        logger.info("stripe_intent_created", payment_ref=intent["id"], amount=request.amount_minor)
        return GatewayIntent(
            payment_ref=intent["id"],
            client_secret=intent["client_secret"],
            fees=request.fees,
        )

    async def confirm_payment(
        self,
        payment_ref: str,
        payment_method_id: str,
        return_url: Optional[str] = None,
    ) -> ConfirmStatus:
        params = {"payment_method": payment_method_id}
        if return_url:
            params["return_url"] = return_url
        intent = await self._call(stripe.PaymentIntent.confirm, payment_ref, **params)

        status = _field(intent, "status", "")
        if status not in _CONFIRM_STATUS:
            raise PaymentGatewayError(f"Payment not completed (status={status})", code=status)
        return _CONFIRM_STATUS[status]

    async def create_hosted_checkout(
        self,
        request: IntentRequest,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckout:
        fees = request.fees
        title = request.description
        session = await self._call(
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": request.currency,
                        "product_data": {"name": title},
                        "unit_amount": to_minor_units(fees.ticket_price),
                    },
                    "quantity": 1,
                },
                {
                    "price_data": {
                        "currency": request.currency,
                        "product_data": {"name": "Processing Fee"},
                        "unit_amount": to_minor_units(fees.processing_fee),
                    },
                    "quantity": 1,
                },
            ],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=request.metadata,
            payment_intent_data={"metadata": request.metadata},
        )
        logger.info("stripe_checkout_created", session_id=session["id"], amount=request.amount_minor)
        return HostedCheckout(session_id=session["id"], checkout_url=session["url"])

    async def retrieve_payment(self, payment_ref: str) -> GatewayPayment:
        if payment_ref.startswith("cs_"):
            session = await self._call(stripe.checkout.Session.retrieve, payment_ref)
            status = _field(session, "payment_status", "")
            intent_ref = _field(session, "payment_intent") or payment_ref
            if not isinstance(intent_ref, str):
                intent_ref = _field(intent_ref, "id", payment_ref)
            succeeded = status == "paid"
            confirmation = confirmation_from_metadata(
                intent_ref, _metadata(session), _field(session, "amount_total", 0)
            )
            return GatewayPayment(
                payment_ref=intent_ref,
                succeeded=succeeded,
                status=status,
                confirmation=confirmation if succeeded else None,
            )

        intent = await self._call(stripe.PaymentIntent.retrieve, payment_ref)
        status = _field(intent, "status", "")
        succeeded = status == "succeeded"
        amount = _field(intent, "amount_received") or _field(intent, "amount", 0)
        confirmation = confirmation_from_metadata(payment_ref, _metadata(intent), amount)
        return GatewayPayment(
            payment_ref=payment_ref,
            succeeded=succeeded,
            status=status,
            confirmation=confirmation if succeeded else None,
        )

    def parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_webhook_rejected", error=str(e))
            raise InvalidWebhookSignature()
        return webhook_event_from_payload(event)


def webhook_event_from_payload(event: Any) -> WebhookEvent:
    """Pull the confirmed ticket payment, if any, out of a verified webhook event."""
    event_type = _field(event, "type", "")
    obj = _field(_field(event, "data", {}), "object", {})

    confirmation = None
    if event_type == PAYMENT_SUCCEEDED:
        amount = _field(obj, "amount_received") or _field(obj, "amount", 0)
        confirmation = confirmation_from_metadata(_field(obj, "id", ""), _metadata(obj), amount)
    elif event_type == CHECKOUT_COMPLETED and _field(obj, "payment_status") == "paid":
        intent_ref = _field(obj, "payment_intent") or _field(obj, "id", "")
        confirmation = confirmation_from_metadata(intent_ref, _metadata(obj), _field(obj, "amount_total", 0))

    return WebhookEvent(type=event_type, confirmation=confirmation)
