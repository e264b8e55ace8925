"""
Settlement attempt throttle backed by Redis.

Caps how often one payment reference can run settlement inside a time
window, so a client stuck retrying its success callback (or a webhook
redelivery storm) can't hammer the database.

Circuit Breaker Pattern:
  On Redis failure, the throttle "fails open" (allows the attempt).
  Settlement is idempotent, so an extra attempt is harmless; refusing to
  settle a paid ticket because Redis is down is not.
"""

from typing import Optional

from rally.core.config import Settings, get_settings
from rally.core.logging import get_logger
from rally.core.metrics import redis_circuit_breaker_open, redis_connection_errors
from rally.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


class SettlementThrottle:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _key(self, payment_ref: str) -> str:
        return f"settlement:attempts:{payment_ref}"

    async def allow(self, payment_ref: str) -> bool:
        """
        Returns:
            True if this attempt may proceed
            False if payment_ref exhausted its attempts for the current window
        """
        client = await get_redis()
        if client is None:
            return True

        try:
            attempts = await client.incr(self._key(payment_ref))
            if attempts == 1:
                await client.expire(self._key(payment_ref), self.settings.SETTLEMENT_ATTEMPT_WINDOW_SECONDS)
            redis_circuit_breaker_open.set(0)
        except Exception as e:
            redis_connection_errors.inc()
            redis_circuit_breaker_open.set(1)
            logger.warning("settlement_throttle_unavailable", payment_ref=payment_ref, error=str(e))
            return True

        if attempts > self.settings.SETTLEMENT_MAX_ATTEMPTS:
            logger.warning("settlement_throttled", payment_ref=payment_ref, attempts=attempts)
            return False
        return True
