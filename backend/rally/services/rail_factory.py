"""
Payment rail factory.
Decides once, from PAYMENT_PLATFORM, which rails this process offers.

Platform rails:
- ios:     apple_pay, payment_sheet, card
- android: google_pay, payment_sheet, card
- web:     redirect
- server:  card, redirect (the HTTP API: no native UI to present)

Wallet and payment-sheet rails need a presenter from the client
integration; without one they are simply not offered.
"""

from typing import Optional

from rally.core.config import get_settings
from rally.services.interfaces.payment_gateway import PaymentGateway
from rally.services.interfaces.payment_rail import PaymentRail
from rally.services.interfaces.presenters import PaymentSheetPresenter, WalletPresenter
from rally.services.rails import ApplePayRail, CardRail, GooglePayRail, PaymentSheetRail, RedirectRail

PLATFORMS = ("ios", "android", "web", "server")


def build_rails(
    platform: str,
    gateway: PaymentGateway,
    wallet: Optional[WalletPresenter] = None,
    sheet: Optional[PaymentSheetPresenter] = None,
) -> dict[str, PaymentRail]:
    if platform not in PLATFORMS:
        raise ValueError(f"Unknown payment platform '{platform}', expected one of {PLATFORMS}")

    rails: list[PaymentRail] = []
    if platform == "ios" and wallet is not None:
        rails.append(ApplePayRail(gateway, wallet))
    if platform == "android" and wallet is not None:
        rails.append(GooglePayRail(gateway, wallet))
    if platform in ("ios", "android") and sheet is not None:
        rails.append(PaymentSheetRail(sheet))
    if platform in ("ios", "android", "server"):
        rails.append(CardRail(gateway))
    if platform in ("web", "server"):
        rails.append(RedirectRail(gateway))

    return {rail.name: rail for rail in rails}


def platform_rails(gateway: PaymentGateway) -> dict[str, PaymentRail]:
    """Rails for the configured PAYMENT_PLATFORM."""
    return build_rails(get_settings().PAYMENT_PLATFORM, gateway)
