"""
Pydantic schemas for the purchase intent and its pricing.

PurchaseIntent is the value object passed through every checkout step.
It is created when the buyer opens checkout and discarded when checkout
closes; the gateway's own intent record is the durable one.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class IntentStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_PAYMENT = "awaiting_payment"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RewardTerms(BaseModel):
    id: int
    club_id: int
    name: str = ""
    type: str
    credits_required: int
    discount_amount: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    is_active: bool = True
    max_redemptions_per_user: Optional[int] = None

    model_config = {"from_attributes": True}


class PriceQuote(BaseModel):
    discounted_price: Decimal
    discount_amount: Decimal
    is_free: bool


class AppliedReward(BaseModel):
    reward: RewardTerms
    discount_amount: Decimal


class PurchaseIntent(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    event_id: int
    club_id: int
    user_id: str
    event_title: str = ""
    currency: str
    original_price: Decimal
    applied_reward: Optional[AppliedReward] = None
    discounted_price: Decimal
    is_free: bool
    status: IntentStatus = IntentStatus.DRAFT
    payment_ref: Optional[str] = None


class FeeBreakdown(BaseModel):
    ticket_price: Decimal
    original_price: Decimal
    discount_amount: Decimal
    processing_fee: Decimal
    total_amount: Decimal
    club_receives: Decimal


class EligibleReward(BaseModel):
    reward: RewardTerms
    description: str
    quote: PriceQuote


class IntentRequest(BaseModel):
    """Everything the gateway needs to create a payment intent or hosted checkout."""

    event_id: int
    currency: str
    ticket_price: Decimal
    original_price: Decimal
    amount_minor: int
    description: str
    fees: FeeBreakdown
    metadata: dict[str, str]


# API payloads

class QuoteRequest(BaseModel):
    event_id: int
    reward_id: Optional[int] = None


class QuoteResponse(BaseModel):
    intent: PurchaseIntent
    fees: Optional[FeeBreakdown] = None


class RewardListResponse(BaseModel):
    event_id: int
    club_id: int
    available_credits: int
    rewards: list[EligibleReward]


class PayRequest(BaseModel):
    event_id: int
    reward_id: Optional[int] = None
    rail: str = Field(default="redirect", pattern=r"^(card|redirect)$")
    payment_method_id: Optional[str] = None


class PayResponse(BaseModel):
    outcome: str
    intent_id: str
    status: IntentStatus
    payment_ref: Optional[str] = None
    checkout_url: Optional[str] = None
    message: Optional[str] = None


class ConfirmRequest(BaseModel):
    payment_ref: str = Field(..., min_length=1, max_length=255)
