from rally.models.club import Club
from rally.models.event import Event, EventAttendee
from rally.models.reward import Reward
from rally.models.credit import CreditBalance, CreditLedgerEntry
from rally.models.settlement import SettlementRecord, PendingDebit

__all__ = [
    "Club", "Event", "EventAttendee", "Reward",
    "CreditBalance", "CreditLedgerEntry",
    "SettlementRecord", "PendingDebit",
]
