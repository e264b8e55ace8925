"""
Shared FastAPI dependencies for the checkout routes.
Tests override get_payment_gateway with an in-memory gateway.
"""

from typing import Optional

from fastapi import Depends

from rally.infrastructure.stripe_gateway import StripeGateway
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail
from rally.services.rail_factory import platform_rails

_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway


def get_payment_rails(gateway: PaymentGateway = Depends(get_payment_gateway)) -> dict[str, PaymentRail]:
    return platform_rails(gateway)
