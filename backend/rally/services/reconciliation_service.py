"""
Replays credit debits that failed after a paid settlement.

Each queued debit is retried with its original payment reference, so a
debit that actually landed earlier is recognised as a duplicate instead
of being taken twice. Items that keep failing are abandoned after
LEDGER_MAX_RETRIES passes and left for manual review.
"""

from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.config import get_settings
from rally.core.errors import CheckoutError
from rally.core.logging import get_logger
from rally.models.settlement import DEBIT_ABANDONED, DEBIT_DEBITED, SettlementRecord
from rally.schemas.settlement import ReconciliationReport
from rally.services import ledger_service
from rally.services.debit_queue import DatabaseDebitQueue
from rally.services.interfaces.debit_queue import DebitCompensationQueue

logger = get_logger(__name__)


async def _set_debit_status(db: AsyncSession, payment_ref: str, status: str) -> None:
    await db.execute(
        update(SettlementRecord).where(SettlementRecord.payment_ref == payment_ref).values(debit_status=status)
    )
    await db.commit()


async def reconcile_pending_debits(
    db: AsyncSession,
    queue: Optional[DebitCompensationQueue] = None,
    limit: int = 100,
) -> ReconciliationReport:
    queue = queue or DatabaseDebitQueue(db)
    max_attempts = get_settings().LEDGER_MAX_RETRIES

    items = [
        (item.id, item.payment_ref, item.user_id, item.club_id, item.amount, item.reason, item.reward_id, item.attempts)
        for item in await queue.pending(limit)
    ]

    completed = abandoned = 0
    errors = []
    for item_id, payment_ref, user_id, club_id, amount, reason, reward_id, attempts in items:
        try:
            await ledger_service.debit_credits(
                db,
                user_id=user_id,
                club_id=club_id,
                amount=amount,
                reason=reason,
                purchase_ref=payment_ref,
                reward_id=reward_id,
            )
        except (CheckoutError, SQLAlchemyError) as e:
            await db.rollback()
            error = e.message if isinstance(e, CheckoutError) else str(e)
            abandon = attempts + 1 >= max_attempts
            await queue.mark_failed(item_id, error, abandon=abandon)
            errors.append(f"{payment_ref}: {error}")
            if abandon:
                abandoned += 1
                await _set_debit_status(db, payment_ref, DEBIT_ABANDONED)
                logger.error("pending_debit_abandoned", payment_ref=payment_ref, user_id=user_id, error=error)
            else:
                logger.warning("pending_debit_retry_failed", payment_ref=payment_ref, attempt=attempts + 1, error=error)
            continue

        await queue.mark_completed(item_id)
        await _set_debit_status(db, payment_ref, DEBIT_DEBITED)
        completed += 1
        logger.info("pending_debit_completed", payment_ref=payment_ref, user_id=user_id, amount=amount)

    report = ReconciliationReport(
        processed=len(items),
        completed=completed,
        abandoned=abandoned,
        still_pending=len(items) - completed - abandoned,
        errors=errors,
    )
    logger.info("debit_reconciliation_finished", **report.model_dump(exclude={"errors"}))
    return report
