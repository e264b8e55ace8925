"""
Schemas exchanged with payment rails and the payment gateway.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from rally.schemas.checkout import FeeBreakdown


class RailOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"
    # Redirect checkout: control has left the process, outcome arrives later
    PENDING = "pending"


class RailResult(BaseModel):
    rail: str
    outcome: RailOutcome
    payment_ref: Optional[str] = None
    checkout_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class GatewayIntent(BaseModel):
    payment_ref: str
    client_secret: str
    fees: FeeBreakdown


class HostedCheckout(BaseModel):
    session_id: str
    checkout_url: str


class ConfirmStatus(str, Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    PROCESSING = "processing"


class PaymentConfirmation(BaseModel):
    """A provider-confirmed payment, rebuilt from gateway metadata."""

    payment_ref: str
    event_id: int
    club_id: int
    user_id: str
    reward_id: Optional[int] = None
    credits_required: int = 0
    original_price: Decimal
    discount_amount: Decimal = Decimal("0.00")
    amount_paid: Decimal


class GatewayPayment(BaseModel):
    """Gateway-side view of a payment, used by the client confirmation path."""

    payment_ref: str
    succeeded: bool
    status: str
    confirmation: Optional[PaymentConfirmation] = None


class WebhookEvent(BaseModel):
    type: str
    confirmation: Optional[PaymentConfirmation] = None


class PresentResult(BaseModel):
    """What the buyer did with a native wallet or payment sheet."""

    outcome: RailOutcome
    payment_method_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
