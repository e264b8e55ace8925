"""
Runs one payment attempt for a purchase intent on the rail the buyer chose.

State machine per checkout:

    NOT_STARTED --start--> IN_PROGRESS --+--> SUCCEEDED
                                         +--> CANCELLED  (re-attemptable)
                                         +--> FAILED     (re-attemptable)
                                         +--> PENDING    (redirect, awaits confirmation)

start() is not reentrant. The IN_PROGRESS check and transition happen
before the first await, so a second tap while a sheet is on screen gets
RailInProgress instead of a second charge.
"""

from enum import Enum
from typing import Optional

from rally.core.errors import InvalidIntentState, PaymentGatewayError, RailInProgress, RailUnavailable
from rally.core.logging import bind_checkout_context, get_logger
from rally.core.metrics import record_rail_outcome
from rally.schemas.checkout import IntentStatus, PurchaseIntent
from rally.schemas.payment import RailOutcome, RailResult
from rally.services.intent_builder import PurchaseIntentBuilder
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail, RailContext

logger = get_logger(__name__)


class DispatchState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"
    PENDING = "pending"


_INTENT_STATUS = {
    RailOutcome.SUCCEEDED: IntentStatus.SETTLING,
    RailOutcome.CANCELLED: IntentStatus.AWAITING_PAYMENT,
    RailOutcome.FAILED: IntentStatus.FAILED,
    RailOutcome.PENDING: IntentStatus.AWAITING_PAYMENT,
}

_DISPATCH_STATE = {
    RailOutcome.SUCCEEDED: DispatchState.SUCCEEDED,
    RailOutcome.CANCELLED: DispatchState.CANCELLED,
    RailOutcome.FAILED: DispatchState.FAILED,
    RailOutcome.PENDING: DispatchState.PENDING,
}


class PaymentRailDispatcher:
    def __init__(
        self,
        gateway: PaymentGateway,
        rails: dict[str, PaymentRail],
        builder: Optional[PurchaseIntentBuilder] = None,
    ):
        self.gateway = gateway
        self.rails = rails
        self.builder = builder or PurchaseIntentBuilder()
        self.state = DispatchState.NOT_STARTED
        self.active_rail: Optional[str] = None

    def available_rails(self) -> list[str]:
        return sorted(self.rails)

    async def start(
        self,
        intent: PurchaseIntent,
        rail_name: str,
        payment_method_id: Optional[str] = None,
    ) -> RailResult:
        """
        Create the gateway intent if the rail needs one, then run the rail.
        Raises PaymentGatewayError only when intent creation itself is rejected.
        """
        if self.state == DispatchState.IN_PROGRESS:
            raise RailInProgress(self.active_rail or rail_name)
        if self.state == DispatchState.SUCCEEDED:
            raise InvalidIntentState("This purchase has already been paid")

        rail = self.rails.get(rail_name)
        if rail is None:
            raise RailUnavailable(rail_name)

        request = self.builder.build(intent)

        self.state = DispatchState.IN_PROGRESS
        self.active_rail = rail_name
        intent.status = IntentStatus.AWAITING_PAYMENT
        bind_checkout_context(intent_id=intent.id, rail=rail_name)
        logger.info("rail_started", rail=rail_name, amount_minor=request.amount_minor)

        try:
            gateway_intent = None
            if rail.requires_intent:
                gateway_intent = await self.gateway.create_intent(request)
                intent.payment_ref = gateway_intent.payment_ref

            result = await rail.run(
                RailContext(
                    intent=intent,
                    request=request,
                    gateway_intent=gateway_intent,
                    payment_method_id=payment_method_id,
                )
            )
        except PaymentGatewayError as e:
            self.state = DispatchState.FAILED
            intent.status = IntentStatus.FAILED
            record_rail_outcome(rail_name, RailOutcome.FAILED.value)
            logger.warning("payment_intent_rejected", rail=rail_name, error=e.gateway_message, code=e.code)
            raise
        except BaseException:
            # Never leave the dispatcher stuck in IN_PROGRESS
            self.state = DispatchState.FAILED
            intent.status = IntentStatus.FAILED
            raise
        finally:
            self.active_rail = None

        if result.payment_ref:
            intent.payment_ref = result.payment_ref
        self.state = _DISPATCH_STATE[result.outcome]
        intent.status = _INTENT_STATUS[result.outcome]
        record_rail_outcome(rail_name, result.outcome.value)

        if result.outcome == RailOutcome.FAILED:
            logger.warning("payment_rail_failed", rail=rail_name, error=result.error, code=result.error_code)
        else:
            logger.info("rail_finished", rail=rail_name, outcome=result.outcome.value,
                        payment_ref=intent.payment_ref)
        return result
