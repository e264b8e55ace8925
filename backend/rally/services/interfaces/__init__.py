"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment_gateway import PaymentGateway
from .payment_rail import PaymentRail, RailContext
from .presenters import WalletPresenter, PaymentSheetPresenter
from .debit_queue import DebitCompensationQueue

__all__ = [
    'PaymentGateway', 'PaymentRail', 'RailContext',
    'WalletPresenter', 'PaymentSheetPresenter', 'DebitCompensationQueue',
]
