"""
Payment rail capability interface.

One implementation per way of paying. The rail factory decides once, at
startup, which rails exist on this platform; call sites never branch on
the platform themselves.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from rally.schemas.checkout import IntentRequest, PurchaseIntent
from rally.schemas.payment import GatewayIntent, RailResult


@dataclass
class RailContext:
    intent: PurchaseIntent
    request: IntentRequest
    gateway_intent: Optional[GatewayIntent] = None
    payment_method_id: Optional[str] = None


class PaymentRail(ABC):
    """
    Implementations:
    - CardRail: direct confirmation with a card payment method
    - ApplePayRail / GooglePayRail: wallet sheet, then confirmation
    - PaymentSheetRail: gateway-hosted sheet, single present call
    - RedirectRail: hosted checkout URL, outcome arrives later
    """

    name: str = ""
    # Redirect checkout creates its own session instead of an intent
    requires_intent: bool = True

    @abstractmethod
    async def run(self, context: RailContext) -> RailResult:
        """
        Drive the rail to an outcome.
        Must not raise for declines or cancellation; report them in the result.
        """
        pass
