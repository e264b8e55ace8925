"""
Compensation queue for best-effort credit debits.

A paid ticket stands even if its credit debit fails. Instead of a silent
catch-and-log, the failed debit is enqueued here and the reconciliation
pass retries it later.
"""

from abc import ABC, abstractmethod
from typing import Optional

from rally.models.settlement import PendingDebit


class DebitCompensationQueue(ABC):

    @abstractmethod
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
        """Queue a debit. Returns False if one is already queued for payment_ref."""
        pass

    @abstractmethod
    async def pending(self, limit: int = 100) -> list[PendingDebit]:
        pass

    @abstractmethod
    async def mark_completed(self, item_id: int) -> None:
        pass

    @abstractmethod
    async def mark_failed(self, item_id: int, error: str, abandon: bool) -> None:
        pass
