"""
Settlement: the side effects of a confirmed purchase.

IDEMPOTENCY STRATEGY
====================

Problem:
  A paid purchase is observed twice, once by the client's success callback
  and once by the gateway webhook, in either order and possibly at the same
  time. Each observation must not add a second attendee row or debit the
  buyer's credits twice.

Solution:
  One SettlementRecord per payment reference, created with
  ON CONFLICT (payment_ref) DO NOTHING. Each side effect has its own status
  column on the record and is itself idempotent:

  - attendance: set-add on (event_id, user_id)
  - credit debit: ledger entry unique on (purchase_ref, 'debit')
  - credit earn: ledger entry unique on (purchase_ref, 'earn')

  Whichever observer arrives second finds the effects done and reports a
  duplicate. If both run at once, the unique constraints decide.

Paid vs free:
  Money has moved before a paid settlement starts, so nothing here can undo
  the purchase. A failed debit is queued for reconciliation and a failed
  attendee write is logged for follow-up; the buyer keeps the ticket.
  A free claim moves no money, so its debit and attendee write commit in a
  single transaction: both land or neither does.
"""

import time
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.config import Settings, get_settings
from rally.core.errors import AlreadyAttending, AttendanceWriteFailure, CheckoutError, InsufficientCredits
from rally.core.logging import bind_checkout_context, get_logger
from rally.core.metrics import record_settlement, settlement_latency
from rally.db.inserts import insert_ignore
from rally.models.event import Event
from rally.models.settlement import (
    ATTENDANCE_FAILED,
    ATTENDANCE_PENDING,
    ATTENDANCE_REGISTERED,
    DEBIT_DEBITED,
    DEBIT_NOT_REQUIRED,
    DEBIT_PENDING,
    DEBIT_QUEUED,
    SETTLED,
    SETTLING,
    SettlementRecord,
)
from rally.schemas.checkout import PurchaseIntent
from rally.schemas.payment import PaymentConfirmation
from rally.schemas.settlement import SettlementResult
from rally.services import attendance_service, ledger_service
from rally.services.debit_queue import DatabaseDebitQueue
from rally.services.interfaces.debit_queue import DebitCompensationQueue
from rally.services.settlement_throttle import SettlementThrottle

logger = get_logger(__name__)

SOURCE_CLIENT = "client"
SOURCE_WEBHOOK = "webhook"
SOURCE_FREE_CLAIM = "free_claim"


def free_claim_ref(intent_id: str) -> str:
    return f"free:{intent_id}"


def debit_reason(reward_id: Optional[int], event_id: int) -> str:
    return f"Redeemed reward {reward_id} for event {event_id}"


class SettlementCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        throttle: Optional[SettlementThrottle] = None,
        queue: Optional[DebitCompensationQueue] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.throttle = throttle or SettlementThrottle(self.settings)
        self.queue = queue or DatabaseDebitQueue(db)

    async def _load(self, payment_ref: str) -> Optional[SettlementRecord]:
        result = await self.db.execute(
            select(SettlementRecord)
            .where(SettlementRecord.payment_ref == payment_ref)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _set(self, payment_ref: str, **values) -> None:
        await self.db.execute(
            update(SettlementRecord).where(SettlementRecord.payment_ref == payment_ref).values(**values)
        )
        await self.db.commit()

    def _result(self, record: SettlementRecord, source: str, **extra) -> SettlementResult:
        return SettlementResult(
            payment_ref=record.payment_ref,
            source=source,
            status=record.status,
            attendance_status=record.attendance_status,
            debit_status=record.debit_status,
            **extra,
        )

    async def settle_paid(self, confirmation: PaymentConfirmation, source: str) -> SettlementResult:
        """
        Apply the side effects of a provider-confirmed payment.
        Safe to call any number of times, from either observer, in any order.
        """
        payment_ref = confirmation.payment_ref
        bind_checkout_context(payment_ref=payment_ref, settlement_source=source)

        if not await self.throttle.allow(payment_ref):
            record_settlement(source, "throttled")
            record = await self._load(payment_ref)
            if record is None:
                return SettlementResult(
                    payment_ref=payment_ref,
                    source=source,
                    status=SETTLING,
                    attendance_status=ATTENDANCE_PENDING,
                    debit_status=DEBIT_PENDING,
                    throttled=True,
                )
            return self._result(record, source, throttled=True)

        started = time.perf_counter()
        logger.info("settlement_started", payment_ref=payment_ref, source=source)
        needs_debit = bool(confirmation.reward_id) and confirmation.credits_required > 0

        created = await insert_ignore(
            self.db,
            SettlementRecord.__table__,
            {
                "payment_ref": payment_ref,
                "event_id": confirmation.event_id,
                "club_id": confirmation.club_id,
                "user_id": confirmation.user_id,
                "reward_id": confirmation.reward_id,
                "credits_required": confirmation.credits_required,
                "original_price": confirmation.original_price,
                "discount_amount": confirmation.discount_amount,
                "amount_paid": confirmation.amount_paid,
                "source": source,
                "status": SETTLING,
                "attendance_status": ATTENDANCE_PENDING,
                "debit_status": DEBIT_PENDING if needs_debit else DEBIT_NOT_REQUIRED,
                "attempts": 0,
            },
            ["payment_ref"],
        )
        await self.db.execute(
            update(SettlementRecord)
            .where(SettlementRecord.payment_ref == payment_ref)
            .values(attempts=SettlementRecord.attempts + 1)
        )
        await self.db.commit()

        record = await self._load(payment_ref)
        if record.status == SETTLED:
            record_settlement(source, "duplicate")
            logger.info("settlement_duplicate", payment_ref=payment_ref, first_source=record.source)
            return self._result(record, source, duplicate=True)

        # Plain values: a rolled-back step expires loaded rows
        event_id = record.event_id
        club_id = record.club_id
        user_id = record.user_id
        reward_id = record.reward_id
        credits_required = record.credits_required
        attendance_status = record.attendance_status
        debit_status = record.debit_status
        waitlisted = False

        if attendance_status != ATTENDANCE_REGISTERED:
            try:
                outcome = await attendance_service.register_with_retry(
                    self.db, event_id, user_id, self.settings.ATTENDANCE_WRITE_RETRIES
                )
                waitlisted = outcome == attendance_service.ADDED_TO_WAITLIST
                attendance_status = ATTENDANCE_REGISTERED
            except CheckoutError as e:
                # Paid but not on the list: needs manual follow-up, never a refund here
                attendance_status = ATTENDANCE_FAILED
                logger.error(
                    "attendance_write_failed",
                    payment_ref=payment_ref,
                    event_id=event_id,
                    user_id=user_id,
                    error=e.message,
                )
            await self._set(payment_ref, attendance_status=attendance_status)

        if debit_status == DEBIT_PENDING:
            debit_status = await self._best_effort_debit(
                payment_ref, user_id, club_id, credits_required, reward_id, event_id
            )
            await self._set(payment_ref, debit_status=debit_status)

        credits_earned = await self._earn(payment_ref, user_id, club_id, event_id)

        status = SETTLED if attendance_status == ATTENDANCE_REGISTERED else SETTLING
        await self._set(payment_ref, status=status)
        settlement_latency.observe(time.perf_counter() - started)
        record_settlement(source, status)

        logger.info(
            "settlement_completed" if status == SETTLED else "settlement_incomplete",
            payment_ref=payment_ref,
            first_observer=created,
            attendance_status=attendance_status,
            debit_status=debit_status,
            credits_earned=credits_earned,
        )
        return SettlementResult(
            payment_ref=payment_ref,
            source=source,
            status=status,
            attendance_status=attendance_status,
            debit_status=debit_status,
            waitlisted=waitlisted,
            credits_earned=credits_earned,
        )

    async def _best_effort_debit(
        self,
        payment_ref: str,
        user_id: str,
        club_id: int,
        amount: int,
        reward_id: Optional[int],
        event_id: int,
    ) -> str:
        reason = debit_reason(reward_id, event_id)
        try:
            await ledger_service.debit_credits(
                self.db,
                user_id=user_id,
                club_id=club_id,
                amount=amount,
                reason=reason,
                purchase_ref=payment_ref,
                reward_id=reward_id,
            )
            return DEBIT_DEBITED
        except (CheckoutError, SQLAlchemyError) as e:
            await self.db.rollback()
            error = e.message if isinstance(e, CheckoutError) else str(e)
            logger.error(
                "ledger_debit_failed",
                payment_ref=payment_ref,
                user_id=user_id,
                amount=amount,
                error=error,
            )
            await self.queue.enqueue(payment_ref, user_id, club_id, amount, reason, reward_id, error)
            return DEBIT_QUEUED

    async def _earn(self, payment_ref: str, user_id: str, club_id: int, event_id: int) -> int:
        result = await self.db.execute(select(Event.credits_awarded).where(Event.id == event_id))
        awarded = result.scalar_one_or_none() or 0
        if awarded <= 0:
            return 0
        try:
            write = await ledger_service.earn_credits(
                self.db, user_id, club_id, awarded, f"Ticket purchase for event {event_id}", payment_ref
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("credit_earn_failed", payment_ref=payment_ref, user_id=user_id, error=str(e))
            return 0
        return 0 if write.duplicate else awarded

    async def claim_free(self, intent: PurchaseIntent) -> SettlementResult:
        """
        Register a free ticket. Debit and attendee write commit together;
        on any failure neither is kept and the error reaches the buyer.
        """
        payment_ref = free_claim_ref(intent.id)
        bind_checkout_context(intent_id=intent.id, payment_ref=payment_ref, settlement_source=SOURCE_FREE_CLAIM)
        started = time.perf_counter()

        applied = intent.applied_reward
        reward_id = applied.reward.id if applied else None
        credits_required = applied.reward.credits_required if applied else 0

        existing = await self._load(payment_ref)
        if existing is not None and existing.status == SETTLED:
            record_settlement(SOURCE_FREE_CLAIM, "duplicate")
            return self._result(existing, SOURCE_FREE_CLAIM, duplicate=True)

        attempts = self.settings.ATTENDANCE_WRITE_RETRIES + 1
        for attempt in range(1, attempts + 1):
            try:
                if credits_required > 0:
                    await ledger_service.debit_credits(
                        self.db,
                        user_id=intent.user_id,
                        club_id=intent.club_id,
                        amount=credits_required,
                        reason=debit_reason(reward_id, intent.event_id),
                        purchase_ref=payment_ref,
                        reward_id=reward_id,
                        commit=False,
                    )
                outcome = await attendance_service.add_attendee(
                    self.db, intent.event_id, intent.user_id, commit=False
                )
                if outcome == attendance_service.ALREADY_PRESENT:
                    # No new ticket, so no debit either
                    raise AlreadyAttending()
                await insert_ignore(
                    self.db,
                    SettlementRecord.__table__,
                    {
                        "payment_ref": payment_ref,
                        "event_id": intent.event_id,
                        "club_id": intent.club_id,
                        "user_id": intent.user_id,
                        "reward_id": reward_id,
                        "credits_required": credits_required,
                        "original_price": intent.original_price,
                        "discount_amount": intent.original_price,
                        "amount_paid": 0,
                        "source": SOURCE_FREE_CLAIM,
                        "status": SETTLED,
                        "attendance_status": ATTENDANCE_REGISTERED,
                        "debit_status": DEBIT_DEBITED if credits_required > 0 else DEBIT_NOT_REQUIRED,
                        "attempts": attempt,
                    },
                    ["payment_ref"],
                )
                await self.db.commit()
                break
            except (InsufficientCredits, AlreadyAttending) as e:
                await self.db.rollback()
                record_settlement(SOURCE_FREE_CLAIM, "rejected")
                logger.info("free_claim_rejected", intent_id=intent.id, kind=e.kind.value)
                raise
            except (CheckoutError, SQLAlchemyError) as e:
                await self.db.rollback()
                error = e.message if isinstance(e, CheckoutError) else str(e)
                logger.warning("free_claim_retry", intent_id=intent.id, attempt=attempt, error=error)
                if attempt == attempts:
                    record_settlement(SOURCE_FREE_CLAIM, "failed")
                    raise AttendanceWriteFailure(intent.event_id, intent.user_id) from e

        settlement_latency.observe(time.perf_counter() - started)
        record_settlement(SOURCE_FREE_CLAIM, SETTLED)
        logger.info(
            "free_ticket_claimed",
            intent_id=intent.id,
            event_id=intent.event_id,
            reward_id=reward_id,
            credits_debited=credits_required,
            waitlisted=outcome == attendance_service.ADDED_TO_WAITLIST,
        )
        return SettlementResult(
            payment_ref=payment_ref,
            source=SOURCE_FREE_CLAIM,
            status=SETTLED,
            attendance_status=ATTENDANCE_REGISTERED,
            debit_status=DEBIT_DEBITED if credits_required > 0 else DEBIT_NOT_REQUIRED,
            waitlisted=outcome == attendance_service.ADDED_TO_WAITLIST,
        )
