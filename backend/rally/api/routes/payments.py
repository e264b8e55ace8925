"""
Payment provider webhook.
"""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rally.api.deps import get_payment_gateway
from rally.db.session import get_db
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.payment_service import handle_webhook

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    payload = await request.body()
    result = await handle_webhook(db, gateway, payload, stripe_signature)
    if result is None:
        return {"status": "ignored"}
    return {"status": "ok", "settlement": result}
