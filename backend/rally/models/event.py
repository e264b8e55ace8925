"""
Event model and its attendee set.

Key design decisions:
- `ticket_price` is NUMERIC(10,2): currency amounts never pass through floats
- The attendee set is a separate table with a unique (event_id, user_id)
  pair, so concurrent identical adds collapse into one row
- `max_attendees` is optional; once full, new registrations are waitlisted
- `credits_awarded` is how many Rally Credits a paid ticket earns
- `currency` may be left unset; checkout then charges in DEFAULT_CURRENCY
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint

from rally.db.base import Base, TimestampMixin

ATTENDING = "attending"
WAITLISTED = "waitlisted"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    ticket_price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)
    max_attendees = Column(Integer, nullable=True)
    credits_awarded = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("ticket_price >= 0", name="check_ticket_price_non_negative"),
        CheckConstraint("credits_awarded >= 0", name="check_credits_awarded_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, price={self.ticket_price} {self.currency})>"


class EventAttendee(Base, TimestampMixin):
    __tablename__ = "event_attendees"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    user_id = Column(String(128), nullable=False)
    status = Column(String(20), nullable=False, default=ATTENDING)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendee"),
        CheckConstraint("status IN ('attending', 'waitlisted')", name="check_attendee_status"),
        Index("ix_event_attendees_event_status", "event_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<EventAttendee(event={self.event_id}, user={self.user_id}, status={self.status})>"
