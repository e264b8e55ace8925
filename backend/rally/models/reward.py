"""
Reward definitions a club offers in exchange for Rally Credits.

A reward carries at most one of a fixed discount amount or a discount
percent; free admission carries neither. The CHECK constraint guards the
first rule, the price calculator guards both at read time.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Numeric, String

from rally.db.base import Base, TimestampMixin

STORE_DISCOUNT = "store_discount"
EVENT_DISCOUNT = "event_discount"
EVENT_FREE_ADMISSION = "event_free_admission"

EVENT_REWARD_TYPES = (EVENT_DISCOUNT, EVENT_FREE_ADMISSION)


class Reward(Base, TimestampMixin):
    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    credits_required = Column(Integer, nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    discount_percent = Column(Numeric(5, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    max_redemptions_per_user = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("credits_required > 0", name="check_reward_credits_positive"),
        CheckConstraint(
            "discount_amount IS NULL OR discount_percent IS NULL",
            name="check_reward_single_discount",
        ),
        CheckConstraint(
            "type IN ('store_discount', 'event_discount', 'event_free_admission')",
            name="check_reward_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<Reward(id={self.id}, type={self.type}, credits={self.credits_required})>"
