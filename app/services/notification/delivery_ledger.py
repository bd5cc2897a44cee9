"""
Delivery ledger - remembers which meeting reports were already emailed so
duplicate or retried webhook deliveries never send a second email.
"""

import time
from typing import Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

LEDGER_KEY_PREFIX = "attendance:notified:"


class DeliveryLedger(Protocol):
    async def claim(self, key: str) -> bool: ...

    async def release(self, key: str) -> None: ...


class InMemoryDeliveryLedger:
    def __init__(self, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds or settings.NOTIFICATION_DEDUP_TTL_SECONDS
        self._claims: dict[str, float] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, expires in self._claims.items() if expires <= now]
        for key in expired:
            del self._claims[key]

    async def claim(self, key: str) -> bool:
        # no await between check and insert, so concurrent claims cannot interleave
        now = time.monotonic()
        self._purge(now)
        if key in self._claims:
            return False
        self._claims[key] = now + self.ttl_seconds
        return True

    async def release(self, key: str) -> None:
        self._claims.pop(key, None)


class RedisDeliveryLedger:
    def __init__(self, client: FastRedisClient | None = None, ttl_seconds: int | None = None):
        self.client = client or fast_redis
        self.ttl_seconds = ttl_seconds or settings.NOTIFICATION_DEDUP_TTL_SECONDS

    async def claim(self, key: str) -> bool:
        return await self.client.set_if_absent(LEDGER_KEY_PREFIX + key, "1", self.ttl_seconds)

    async def release(self, key: str) -> None:
        await self.client.delete(LEDGER_KEY_PREFIX + key)


def build_delivery_ledger() -> DeliveryLedger:
    if settings.REDIS_URL:
        return RedisDeliveryLedger()
    return InMemoryDeliveryLedger()
