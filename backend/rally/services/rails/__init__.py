"""
Concrete payment rails.
"""

from .card_rail import CardRail
from .wallet_rail import WalletRail, ApplePayRail, GooglePayRail
from .payment_sheet_rail import PaymentSheetRail
from .redirect_rail import RedirectRail

__all__ = ['CardRail', 'WalletRail', 'ApplePayRail', 'GooglePayRail', 'PaymentSheetRail', 'RedirectRail']
