from rally.schemas.checkout import (
    IntentStatus, RewardTerms, PriceQuote, AppliedReward, PurchaseIntent,
    FeeBreakdown, EligibleReward, IntentRequest,
)
from rally.schemas.payment import (
    RailOutcome, RailResult, GatewayIntent, HostedCheckout, ConfirmStatus,
    PaymentConfirmation, GatewayPayment, WebhookEvent, PresentResult,
)
from rally.schemas.settlement import SettlementResult, ReconciliationReport, CheckoutOutcome

__all__ = [
    "IntentStatus", "RewardTerms", "PriceQuote", "AppliedReward", "PurchaseIntent",
    "FeeBreakdown", "EligibleReward", "IntentRequest",
    "RailOutcome", "RailResult", "GatewayIntent", "HostedCheckout", "ConfirmStatus",
    "PaymentConfirmation", "GatewayPayment", "WebhookEvent", "PresentResult",
    "SettlementResult", "ReconciliationReport", "CheckoutOutcome",
]
