"""
Schemas describing the result of a settlement run.
"""

from typing import Optional

from pydantic import BaseModel

from rally.schemas.checkout import PurchaseIntent
from rally.schemas.payment import RailResult


class SettlementResult(BaseModel):
    payment_ref: str
    source: str
    status: str
    attendance_status: str
    debit_status: str
    duplicate: bool = False
    throttled: bool = False
    waitlisted: bool = False
    credits_earned: int = 0


class ReconciliationReport(BaseModel):
    processed: int
    completed: int
    abandoned: int
    still_pending: int
    errors: list[str] = []


class CheckoutOutcome(BaseModel):
    """What a pay() call ended in, for the UI to render."""

    outcome: str  # settled, free_claimed, pending, cancelled, failed
    intent: PurchaseIntent
    rail_result: Optional[RailResult] = None
    settlement: Optional[SettlementResult] = None
    message: Optional[str] = None
