"""
Rally Credit balances and the immutable ledger.

Key design decisions:
- One balance row per (user, club); `available_credits >= 0` is enforced by
  the database, so no code path can overdraw even if it skips the check
- `version` enables optimistic locking:
  a debit only lands if nobody changed the row since it was read
- Ledger entries are append-only. (purchase_ref, entry_type) is unique, which
  makes "debit for purchase X" happen at most once no matter how many times
  settlement runs
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, UniqueConstraint

from rally.db.base import Base, TimestampMixin

DEBIT = "debit"
EARN = "earn"
REFUND = "refund"


class CreditBalance(Base, TimestampMixin):
    __tablename__ = "credit_balances"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    available_credits = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("user_id", "club_id", name="uq_credit_balance_user_club"),
        CheckConstraint("available_credits >= 0", name="check_available_credits_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<CreditBalance(user={self.user_id}, club={self.club_id}, available={self.available_credits})>"


class CreditLedgerEntry(Base, TimestampMixin):
    __tablename__ = "credit_ledger_entries"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    entry_type = Column(String(16), nullable=False)
    amount = Column(Integer, nullable=False)  # signed: debits are negative
    balance_after = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    reward_id = Column(Integer, ForeignKey("rewards.id"), nullable=True)
    purchase_ref = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("purchase_ref", "entry_type", name="uq_ledger_purchase_entry"),
        CheckConstraint("entry_type IN ('debit', 'earn', 'refund')", name="check_ledger_entry_type"),
        Index("ix_ledger_user_club", "user_id", "club_id"),
        Index("ix_ledger_user_reward", "user_id", "reward_id"),
    )

    def __repr__(self) -> str:
        return f"<CreditLedgerEntry(user={self.user_id}, type={self.entry_type}, amount={self.amount})>"
