"""
Club model. Only the fields the checkout engine reads are mapped here;
membership administration lives elsewhere.
"""

from sqlalchemy import Boolean, Column, Integer, String

from rally.db.base import Base, TimestampMixin


class Club(Base, TimestampMixin):
    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # Paid tickets require a connected payout account
    payouts_enabled = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Club(id={self.id}, name={self.name})>"
