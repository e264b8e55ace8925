"""
Event attendee set.

Registration is an idempotent set-add keyed on (event_id, user_id): the
unique constraint plus ON CONFLICT DO NOTHING turns a second add from the
webhook or a retried callback into a no-op. Events with a capacity put
registrations beyond it on the waitlist.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.errors import AttendanceWriteFailure, EventNotFound
from rally.core.logging import get_logger
from rally.core.metrics import record_attendance_write
from rally.db.inserts import insert_ignore
from rally.models.event import ATTENDING, WAITLISTED, Event, EventAttendee

logger = get_logger(__name__)

ADDED = "added"
ADDED_TO_WAITLIST = "waitlisted"
ALREADY_PRESENT = "already_present"


async def attendee_status(db: AsyncSession, event_id: int, user_id: str) -> Optional[str]:
    result = await db.execute(
        select(EventAttendee.status).where(
            EventAttendee.event_id == event_id,
            EventAttendee.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def is_attending(db: AsyncSession, event_id: int, user_id: str) -> bool:
    return await attendee_status(db, event_id, user_id) is not None


async def _attending_count(db: AsyncSession, event_id: int) -> int:
    result = await db.execute(
        select(func.count(EventAttendee.id)).where(
            EventAttendee.event_id == event_id,
            EventAttendee.status == ATTENDING,
        )
    )
    return result.scalar_one()


async def add_attendee(db: AsyncSession, event_id: int, user_id: str, commit: bool = True) -> str:
    """
    Add user_id to the event's attendee set.
    Returns ADDED, ADDED_TO_WAITLIST or ALREADY_PRESENT.
    """
    result = await db.execute(select(Event.max_attendees).where(Event.id == event_id))
    row = result.one_or_none()
    if row is None:
        raise EventNotFound(event_id)

    status = ATTENDING
    if row.max_attendees is not None and await _attending_count(db, event_id) >= row.max_attendees:
        status = WAITLISTED

    inserted = await insert_ignore(
        db,
        EventAttendee.__table__,
        {"event_id": event_id, "user_id": user_id, "status": status},
        ["event_id", "user_id"],
    )
    if commit:
        await db.commit()

    if not inserted:
        outcome = ALREADY_PRESENT
    elif status == WAITLISTED:
        outcome = ADDED_TO_WAITLIST
    else:
        outcome = ADDED

    record_attendance_write(outcome)
    logger.info("attendee_written", event_id=event_id, user_id=user_id, outcome=outcome)
    return outcome


async def register_with_retry(db: AsyncSession, event_id: int, user_id: str, retries: int) -> str:
    """
    add_attendee, retried `retries` more times on database errors.
    Raises AttendanceWriteFailure once every attempt has failed.
    """
    for attempt in range(1, retries + 2):
        try:
            return await add_attendee(db, event_id, user_id)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(
                "attendee_write_retry",
                event_id=event_id,
                user_id=user_id,
                attempt=attempt,
                error=str(e),
            )

    record_attendance_write("failed")
    raise AttendanceWriteFailure(event_id, user_id)
