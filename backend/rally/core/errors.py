"""
Checkout error taxonomy.

Every failure the engine can surface carries an ErrorKind and a message that
is safe to show the buyer. A cancelled payment is not an error and has no
exception here: rails report it as RailOutcome.CANCELLED.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_REWARD_DEFINITION = "InvalidRewardDefinition"
    INSUFFICIENT_CREDITS = "InsufficientCredits"
    PAYMENT_GATEWAY_ERROR = "PaymentGatewayError"
    LEDGER_DEBIT_FAILURE = "LedgerDebitFailure"
    ATTENDANCE_WRITE_FAILURE = "AttendanceWriteFailure"
    EVENT_NOT_FOUND = "EventNotFound"
    REWARD_NOT_FOUND = "RewardNotFound"
    ALREADY_ATTENDING = "AlreadyAttending"
    RAIL_IN_PROGRESS = "RailInProgress"
    RAIL_UNAVAILABLE = "RailUnavailable"
    INVALID_INTENT_STATE = "InvalidIntentState"
    REDEMPTION_LIMIT_REACHED = "RedemptionLimitReached"
    INVALID_WEBHOOK_SIGNATURE = "InvalidWebhookSignature"


class CheckoutError(Exception):
    """Base error with a kind and a buyer-safe message."""

    kind: ErrorKind = ErrorKind.INVALID_INTENT_STATE

    def __init__(self, message: str, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class InvalidRewardDefinition(CheckoutError):
    kind = ErrorKind.INVALID_REWARD_DEFINITION

    def __init__(self, detail: str) -> None:
        # The buyer only ever sees the generic message; detail goes to the logs.
        super().__init__("This reward can't be applied right now. Please try again.")
        self.detail = detail


class InsufficientCredits(CheckoutError):
    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"You need {required} Rally Credits to apply this reward. "
            f"You have {available} credits."
        )
        self.available = available
        self.required = required


class PaymentGatewayError(CheckoutError):
    kind = ErrorKind.PAYMENT_GATEWAY_ERROR

    GENERIC_MESSAGE = "Payment could not be completed. Please try again."

    def __init__(self, gateway_message: str, actionable: bool = False, code: Optional[str] = None) -> None:
        # Declines and insufficient funds are shown verbatim, anything else is generic.
        super().__init__(gateway_message if actionable else self.GENERIC_MESSAGE)
        self.gateway_message = gateway_message
        self.actionable = actionable
        self.code = code


class LedgerDebitFailure(CheckoutError):
    kind = ErrorKind.LEDGER_DEBIT_FAILURE

    def __init__(self, reason: str) -> None:
        super().__init__(f"Credit debit failed: {reason}")
        self.reason = reason


class AttendanceWriteFailure(CheckoutError):
    kind = ErrorKind.ATTENDANCE_WRITE_FAILURE

    def __init__(self, event_id: int, user_id: str) -> None:
        super().__init__("We couldn't register you for this event. Please try again.")
        self.event_id = event_id
        self.user_id = user_id


class EventNotFound(CheckoutError):
    kind = ErrorKind.EVENT_NOT_FOUND

    def __init__(self, event_id: int) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class RewardNotFound(CheckoutError):
    kind = ErrorKind.REWARD_NOT_FOUND

    def __init__(self, reward_id: int) -> None:
        super().__init__(f"Reward {reward_id} is not available for this event")
        self.reward_id = reward_id


class AlreadyAttending(CheckoutError):
    kind = ErrorKind.ALREADY_ATTENDING

    def __init__(self) -> None:
        super().__init__("You are already attending this event")


class RailInProgress(CheckoutError):
    kind = ErrorKind.RAIL_IN_PROGRESS

    def __init__(self, rail: str) -> None:
        super().__init__(f"A {rail} payment is already in progress")
        self.rail = rail


class RailUnavailable(CheckoutError):
    kind = ErrorKind.RAIL_UNAVAILABLE

    def __init__(self, rail: str) -> None:
        super().__init__(f"Payment method '{rail}' is not available on this platform")
        self.rail = rail


class InvalidIntentState(CheckoutError):
    kind = ErrorKind.INVALID_INTENT_STATE


class RedemptionLimitReached(CheckoutError):
    kind = ErrorKind.REDEMPTION_LIMIT_REACHED

    def __init__(self, reward_id: int, limit: int) -> None:
        super().__init__(f"You have already redeemed this reward the maximum of {limit} times")
        self.reward_id = reward_id
        self.limit = limit


class InvalidWebhookSignature(CheckoutError):
    kind = ErrorKind.INVALID_WEBHOOK_SIGNATURE

    def __init__(self) -> None:
        super().__init__("Invalid webhook signature")
