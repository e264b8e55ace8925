"""
Rally Credits ledger with concurrency-safe debits.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  A buyer with 100 credits applies a 100-credit reward on two devices and
  both purchases settle at the same moment. Both read available=100, both
  subtract 100. Result: the reward is paid for once and redeemed twice.

Solution:
  A versioned conditional UPDATE:

  1. Read the balance row and its version
  2. UPDATE credit_balances SET available_credits = available_credits - N,
     version = version + 1
     WHERE id = :id AND version = :version AND available_credits >= N
  3. If rows_affected == 0, someone else modified the row -> retry

  The ledger entry is written in the same transaction with
  ON CONFLICT (purchase_ref, entry_type) DO NOTHING. If the entry already
  exists the purchase was debited before, so the balance update is rolled
  back and the call reports a duplicate. Settling the same payment twice
  therefore debits once.

  The CHECK constraint (available_credits >= 0) is the final safety net.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.config import get_settings
from rally.core.errors import InsufficientCredits, LedgerDebitFailure
from rally.core.logging import get_logger
from rally.core.metrics import ledger_retries, record_ledger_debit
from rally.db.inserts import insert_ignore
from rally.models.credit import DEBIT, EARN, CreditBalance, CreditLedgerEntry

logger = get_logger(__name__)


@dataclass
class LedgerWrite:
    amount: int
    balance_after: int
    duplicate: bool = False


async def get_balance(db: AsyncSession, user_id: str, club_id: int) -> int:
    """Available credits; a buyer with no balance row has zero."""
    result = await db.execute(
        select(CreditBalance.available_credits).where(
            CreditBalance.user_id == user_id,
            CreditBalance.club_id == club_id,
        )
    )
    available = result.scalar_one_or_none()
    return available or 0


async def redemption_count(db: AsyncSession, user_id: str, reward_id: int) -> int:
    result = await db.execute(
        select(func.count(CreditLedgerEntry.id)).where(
            CreditLedgerEntry.user_id == user_id,
            CreditLedgerEntry.reward_id == reward_id,
            CreditLedgerEntry.entry_type == DEBIT,
        )
    )
    return result.scalar_one()


async def _existing_entry(db: AsyncSession, purchase_ref: str, entry_type: str) -> Optional[CreditLedgerEntry]:
    result = await db.execute(
        select(CreditLedgerEntry).where(
            CreditLedgerEntry.purchase_ref == purchase_ref,
            CreditLedgerEntry.entry_type == entry_type,
        )
    )
    return result.scalar_one_or_none()


async def debit_credits(
    db: AsyncSession,
    user_id: str,
    club_id: int,
    amount: int,
    reason: str,
    purchase_ref: str,
    reward_id: Optional[int] = None,
    commit: bool = True,
) -> LedgerWrite:
    """
    Debit `amount` credits for one purchase.
    Retries up to LEDGER_MAX_RETRIES on version conflicts.

    With commit=False the caller owns the transaction, which lets a free
    claim commit the debit and the attendee write together.
    """
    if amount <= 0:
        raise LedgerDebitFailure(f"debit amount must be positive, got {amount}")

    existing = await _existing_entry(db, purchase_ref, DEBIT)
    if existing is not None:
        record_ledger_debit("duplicate")
        logger.info("ledger_debit_duplicate", purchase_ref=purchase_ref, user_id=user_id)
        return LedgerWrite(amount=existing.amount, balance_after=existing.balance_after, duplicate=True)

    max_attempts = get_settings().LEDGER_MAX_RETRIES
    for attempt in range(1, max_attempts + 1):
        # Column select: never served from the identity map
        result = await db.execute(
            select(CreditBalance.id, CreditBalance.available_credits, CreditBalance.version).where(
                CreditBalance.user_id == user_id,
                CreditBalance.club_id == club_id,
            )
        )
        row = result.one_or_none()
        available = row.available_credits if row else 0

        if row is None or available < amount:
            record_ledger_debit("insufficient")
            logger.warning(
                "ledger_debit_insufficient",
                user_id=user_id,
                club_id=club_id,
                required=amount,
                available=available,
            )
            raise InsufficientCredits(available=available, required=amount)

        update_result = await db.execute(
            update(CreditBalance)
            .where(
                CreditBalance.id == row.id,
                CreditBalance.version == row.version,
                CreditBalance.available_credits >= amount,
            )
            .values(
                available_credits=CreditBalance.available_credits - amount,
                version=CreditBalance.version + 1,
            )
        )

        if update_result.rowcount == 0:
            ledger_retries.inc()
            logger.info("ledger_debit_retry", user_id=user_id, club_id=club_id, attempt=attempt)
            await db.rollback()
            continue

        balance_after = available - amount
        inserted = await insert_ignore(
            db,
            CreditLedgerEntry.__table__,
            {
                "user_id": user_id,
                "club_id": club_id,
                "entry_type": DEBIT,
                "amount": -amount,
                "balance_after": balance_after,
                "reason": reason,
                "reward_id": reward_id,
                "purchase_ref": purchase_ref,
            },
            ["purchase_ref", "entry_type"],
        )
        if not inserted:
            # Another settlement debited this purchase first
            await db.rollback()
            record_ledger_debit("duplicate")
            logger.info("ledger_debit_duplicate", purchase_ref=purchase_ref, user_id=user_id)
            return LedgerWrite(amount=-amount, balance_after=await get_balance(db, user_id, club_id), duplicate=True)

        if commit:
            await db.commit()

        record_ledger_debit("debited")
        logger.info(
            "ledger_debited",
            user_id=user_id,
            club_id=club_id,
            amount=amount,
            balance_after=balance_after,
            purchase_ref=purchase_ref,
            attempt=attempt,
        )
        return LedgerWrite(amount=-amount, balance_after=balance_after)

    record_ledger_debit("error")
    raise LedgerDebitFailure("balance changed too often, please try again")


async def earn_credits(
    db: AsyncSession,
    user_id: str,
    club_id: int,
    amount: int,
    reason: str,
    purchase_ref: str,
) -> LedgerWrite:
    """Award credits for a purchase. At most once per purchase_ref."""
    existing = await _existing_entry(db, purchase_ref, EARN)
    if existing is not None:
        return LedgerWrite(amount=existing.amount, balance_after=existing.balance_after, duplicate=True)

    await insert_ignore(
        db,
        CreditBalance.__table__,
        {"user_id": user_id, "club_id": club_id, "available_credits": 0, "version": 1},
        ["user_id", "club_id"],
    )
    await db.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id, CreditBalance.club_id == club_id)
        .values(
            available_credits=CreditBalance.available_credits + amount,
            version=CreditBalance.version + 1,
        )
    )
    balance_after = await get_balance(db, user_id, club_id)

    inserted = await insert_ignore(
        db,
        CreditLedgerEntry.__table__,
        {
            "user_id": user_id,
            "club_id": club_id,
            "entry_type": EARN,
            "amount": amount,
            "balance_after": balance_after,
            "reason": reason,
            "reward_id": None,
            "purchase_ref": purchase_ref,
        },
        ["purchase_ref", "entry_type"],
    )
    if not inserted:
        await db.rollback()
        return LedgerWrite(amount=amount, balance_after=await get_balance(db, user_id, club_id), duplicate=True)

    await db.commit()
    logger.info("ledger_earned", user_id=user_id, club_id=club_id, amount=amount, purchase_ref=purchase_ref)
    return LedgerWrite(amount=amount, balance_after=balance_after)
