"""
Settlement bookkeeping.

SettlementRecord is the single authoritative row per confirmed payment.
The client success callback and the gateway webhook both upsert it, and
each side effect consults and updates its own status column, so a second
observation of the same payment never repeats a write that already landed.

PendingDebit is the compensation queue for paid tickets whose credit debit
failed after the charge went through.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String

from rally.db.base import Base, TimestampMixin

# settlement status
SETTLING = "settling"
SETTLED = "settled"

# attendance_status
ATTENDANCE_PENDING = "pending"
ATTENDANCE_REGISTERED = "registered"
ATTENDANCE_FAILED = "failed"

# debit_status
DEBIT_NOT_REQUIRED = "not_required"
DEBIT_PENDING = "pending"
DEBIT_DEBITED = "debited"
DEBIT_QUEUED = "queued"
DEBIT_ABANDONED = "abandoned"

# pending debit status
QUEUE_PENDING = "pending"
QUEUE_COMPLETED = "completed"
QUEUE_ABANDONED = "abandoned"


class SettlementRecord(Base, TimestampMixin):
    __tablename__ = "settlement_records"

    id = Column(Integer, primary_key=True)
    payment_ref = Column(String(255), nullable=False, unique=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    user_id = Column(String(128), nullable=False)
    reward_id = Column(Integer, ForeignKey("rewards.id"), nullable=True)
    credits_required = Column(Integer, nullable=False, default=0)
    original_price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    source = Column(String(20), nullable=False)  # first observer: client, webhook, free_claim
    status = Column(String(20), nullable=False, default=SETTLING)
    attendance_status = Column(String(20), nullable=False, default=ATTENDANCE_PENDING)
    debit_status = Column(String(20), nullable=False, default=DEBIT_NOT_REQUIRED)
    attempts = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("status IN ('settling', 'settled')", name="check_settlement_status"),
        Index("ix_settlement_event_user", "event_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<SettlementRecord(ref={self.payment_ref}, status={self.status}, debit={self.debit_status})>"


class PendingDebit(Base, TimestampMixin):
    __tablename__ = "pending_debits"

    id = Column(Integer, primary_key=True)
    payment_ref = Column(String(255), nullable=False, unique=True)
    user_id = Column(String(128), nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    reward_id = Column(Integer, ForeignKey("rewards.id"), nullable=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=QUEUE_PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_pending_debit_amount_positive"),
        CheckConstraint("status IN ('pending', 'completed', 'abandoned')", name="check_pending_debit_status"),
        Index("ix_pending_debits_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<PendingDebit(ref={self.payment_ref}, status={self.status}, attempts={self.attempts})>"
