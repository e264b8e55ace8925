"""
Checkout endpoints: reward selection, fee quote, payment and confirmation.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rally.api.deps import get_payment_gateway, get_payment_rails
from rally.core.security import get_current_user_id
from rally.db.session import get_db
from rally.schemas.checkout import (
    ConfirmRequest,
    PayRequest,
    PayResponse,
    QuoteRequest,
    QuoteResponse,
    RewardListResponse,
)
from rally.schemas.settlement import SettlementResult
from rally.services import ledger_service
from rally.services.checkout_service import CheckoutSession
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail
from rally.services.payment_service import confirm_client_payment

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.get("/events/{event_id}/rewards", response_model=RewardListResponse)
async def list_event_rewards(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    rails: dict[str, PaymentRail] = Depends(get_payment_rails),
):
    """Rewards the buyer can afford for this event, with the price each one gives."""
    session = await CheckoutSession.open(db, gateway, rails, event_id, user_id)
    balance = await ledger_service.get_balance(db, user_id, session.intent.club_id)
    rewards = await session.selector.list_eligible(session.intent, balance=balance)
    return RewardListResponse(
        event_id=event_id,
        club_id=session.intent.club_id,
        available_credits=balance,
        rewards=rewards,
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    body: QuoteRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    rails: dict[str, PaymentRail] = Depends(get_payment_rails),
):
    """
    Price the ticket with an optional reward.
    The fee breakdown is the exact amount a subsequent pay call charges.
    """
    session = await CheckoutSession.open(db, gateway, rails, body.event_id, user_id)
    if body.reward_id is not None:
        await session.apply_reward(body.reward_id)
    return QuoteResponse(intent=session.intent, fees=session.preview_fees())


@router.post("/pay", response_model=PayResponse)
async def pay(
    body: PayRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    rails: dict[str, PaymentRail] = Depends(get_payment_rails),
):
    """
    Pay for (or claim) a ticket.

    Free tickets are claimed immediately. Card payments settle on success;
    redirect payments return a checkout_url and settle on confirmation.
    """
    session = await CheckoutSession.open(db, gateway, rails, body.event_id, user_id)
    if body.reward_id is not None:
        await session.apply_reward(body.reward_id)

    result = await session.pay(body.rail, body.payment_method_id)
    rail_result = result.rail_result
    return PayResponse(
        outcome=result.outcome,
        intent_id=result.intent.id,
        status=result.intent.status,
        payment_ref=result.intent.payment_ref,
        checkout_url=rail_result.checkout_url if rail_result else None,
        message=result.message,
    )


@router.post("/confirm", response_model=SettlementResult)
async def confirm(
    body: ConfirmRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Settle after the app returns from a rail or the hosted checkout page."""
    return await confirm_client_payment(db, gateway, body.payment_ref, user_id)
