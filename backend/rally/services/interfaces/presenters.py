"""
Native payment UI collaborators.

Wallet sheets and the aggregated payment sheet are drawn by the device;
the engine only sees what the buyer did with them. Implementations live
with the client integration, tests use fakes.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from rally.schemas.checkout import FeeBreakdown
from rally.schemas.payment import PresentResult


class WalletPresenter(ABC):
    """Presents one wallet (Apple Pay, Google Pay) and returns a payment method token."""

    wallet: str = ""

    @abstractmethod
    async def present(self, client_secret: str, amount: Decimal, currency: str) -> PresentResult:
        pass


class PaymentSheetPresenter(ABC):
    """Presents the gateway-hosted sheet; confirmation happens inside the sheet."""

    @abstractmethod
    async def present(self, client_secret: str, fees: FeeBreakdown) -> PresentResult:
        pass
