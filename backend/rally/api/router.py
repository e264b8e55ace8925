"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from rally.api.routes import checkout, payments, credits

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(checkout.router)
api_router.include_router(payments.router)
api_router.include_router(credits.router)
