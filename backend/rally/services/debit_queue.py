"""
Database-backed compensation queue for failed best-effort debits.
One row per payment reference; re-enqueueing the same payment is a no-op.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.logging import get_logger
from rally.core.metrics import pending_debit_events
from rally.db.inserts import insert_ignore
from rally.models.settlement import QUEUE_ABANDONED, QUEUE_COMPLETED, QUEUE_PENDING, PendingDebit
from rally.services.interfaces.debit_queue import DebitCompensationQueue

logger = get_logger(__name__)


class DatabaseDebitQueue(DebitCompensationQueue):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        payment_ref: str,
        user_id: str,
        club_id: int,
        amount: int,
        reason: str,
        reward_id: Optional[int],
        error: str,
    ) -> bool:
        inserted = await insert_ignore(
            self.db,
            PendingDebit.__table__,
            {
                "payment_ref": payment_ref,
                "user_id": user_id,
                "club_id": club_id,
                "reward_id": reward_id,
                "amount": amount,
                "reason": reason,
                "status": QUEUE_PENDING,
                "attempts": 0,
                "last_error": error[:500],
            },
            ["payment_ref"],
        )
        await self.db.commit()
        if inserted:
            pending_debit_events.labels(event="enqueued").inc()
            logger.warning("pending_debit_enqueued", payment_ref=payment_ref, user_id=user_id, amount=amount)
        return inserted

    async def pending(self, limit: int = 100) -> list[PendingDebit]:
        result = await self.db.execute(
            select(PendingDebit)
            .where(PendingDebit.status == QUEUE_PENDING)
            .order_by(PendingDebit.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _get(self, item_id: int) -> PendingDebit:
        # Refresh: a rolled-back debit attempt expires loaded rows
        return await self.db.get(PendingDebit, item_id, populate_existing=True)

    async def mark_completed(self, item_id: int) -> None:
        item = await self._get(item_id)
        item.status = QUEUE_COMPLETED
        item.attempts += 1
        item.last_error = None
        await self.db.commit()
        pending_debit_events.labels(event="completed").inc()

    async def mark_failed(self, item_id: int, error: str, abandon: bool) -> None:
        item = await self._get(item_id)
        item.attempts += 1
        item.last_error = error[:500]
        if abandon:
            item.status = QUEUE_ABANDONED
            pending_debit_events.labels(event="abandoned").inc()
        await self.db.commit()
