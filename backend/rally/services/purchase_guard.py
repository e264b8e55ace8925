"""
Per-buyer purchase lock backed by Redis.

One buyer may have only one paid checkout running per event at a time, no
matter how many checkout sessions or requests they open. The lock is a
SET NX key with a TTL, so a crashed request frees it on its own.

Like the settlement throttle, the guard fails open when Redis is
unavailable: the attendance re-check in checkout still stops repeat
purchases, only the concurrent double-tap window is left unguarded.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from rally.core.config import Settings, get_settings
from rally.core.errors import RailInProgress
from rally.core.logging import get_logger
from rally.core.metrics import redis_circuit_breaker_open, redis_connection_errors
from rally.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


class PurchaseGuard:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _key(self, event_id: int, user_id: str) -> str:
        return f"checkout:in_progress:{event_id}:{user_id}"

    @asynccontextmanager
    async def hold(self, event_id: int, user_id: str, rail: str) -> AsyncIterator[None]:
        """
        Hold the buyer's purchase lock for event_id while the body runs.

        Raises:
            RailInProgress: another checkout for the same buyer and event holds it
        """
        client = await get_redis()
        key = self._key(event_id, user_id)
        acquired = False

        if client is not None:
            try:
                acquired = bool(
                    await client.set(key, rail, nx=True, ex=self.settings.PURCHASE_LOCK_TTL_SECONDS)
                )
                redis_circuit_breaker_open.set(0)
            except Exception as e:
                redis_connection_errors.inc()
                redis_circuit_breaker_open.set(1)
                logger.warning("purchase_guard_unavailable", event_id=event_id, error=str(e))
                client = None

            if client is not None and not acquired:
                logger.warning("purchase_already_in_progress", event_id=event_id, user_id=user_id)
                raise RailInProgress(rail)

        try:
            yield
        finally:
            if acquired:
                try:
                    await client.delete(key)
                except Exception as e:
                    redis_connection_errors.inc()
                    logger.warning("purchase_guard_release_failed", event_id=event_id, error=str(e))
