"""
Settlement entry points driven by the payment provider.

confirm_client_payment: the app returns from a rail (or the hosted
checkout deep link) and asks the server to settle. The gateway is asked
for the payment's real status; the client's word is never enough.

handle_webhook: the provider reports the payment directly. Usually the
second observer, sometimes the first, occasionally the only one.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.errors import InvalidIntentState, PaymentGatewayError
from rally.core.logging import get_logger
from rally.schemas.settlement import SettlementResult
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.settlement_service import SOURCE_CLIENT, SOURCE_WEBHOOK, SettlementCoordinator
from rally.services.settlement_throttle import SettlementThrottle

logger = get_logger(__name__)


class PaymentOwnershipError(InvalidIntentState):
    def __init__(self) -> None:
        super().__init__("This payment belongs to another account")


async def confirm_client_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    payment_ref: str,
    user_id: str,
    throttle: Optional[SettlementThrottle] = None,
) -> SettlementResult:
    payment = await gateway.retrieve_payment(payment_ref)
    if not payment.succeeded:
        raise PaymentGatewayError(
            f"Payment not confirmed (status={payment.status})",
            actionable=True,
            code=payment.status,
        )
    if payment.confirmation is None:
        raise InvalidIntentState("This payment is not an event ticket purchase")
    if payment.confirmation.user_id != user_id:
        logger.warning("payment_confirm_wrong_user", payment_ref=payment.payment_ref, user_id=user_id)
        raise PaymentOwnershipError()

    coordinator = SettlementCoordinator(db, throttle=throttle)
    return await coordinator.settle_paid(payment.confirmation, SOURCE_CLIENT)


async def handle_webhook(
    db: AsyncSession,
    gateway: PaymentGateway,
    payload: bytes,
    signature: str,
    throttle: Optional[SettlementThrottle] = None,
) -> Optional[SettlementResult]:
    """Returns None for events that carry no ticket payment."""
    event = gateway.parse_webhook(payload, signature)
    if event.confirmation is None:
        logger.info("webhook_ignored", event_type=event.type)
        return None

    coordinator = SettlementCoordinator(db, throttle=throttle)
    return await coordinator.settle_paid(event.confirmation, SOURCE_WEBHOOK)
