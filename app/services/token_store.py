"""
Token stores backing the credential cache.

The in-memory store is the default; the Redis store is selected when
REDIS_URL is configured so several workers share one provider token.
"""

import json
from datetime import UTC, datetime, timedelta
from typing import Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.attendance_domain import AccessToken
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "zoom:access_token"


class TokenStore(Protocol):
    async def get(self) -> AccessToken | None: ...

    async def set(self, token: AccessToken, ttl_seconds: int) -> None: ...

    async def delete(self) -> None: ...

    async def health_check(self) -> dict: ...


class InMemoryTokenStore:
    """Process-local store; the cached entry is replaced by a single assignment."""

    def __init__(self):
        self._entry: tuple[AccessToken, datetime] | None = None

    async def get(self) -> AccessToken | None:
        entry = self._entry
        if entry is None:
            return None
        token, expires_at = entry
        if datetime.now(UTC) >= expires_at:
            logger.debug("Cached access token expired", expired_at=expires_at.isoformat())
            if self._entry is entry:
                self._entry = None
            return None
        return token

    async def set(self, token: AccessToken, ttl_seconds: int) -> None:
        self._entry = (token, token.issued_at + timedelta(seconds=ttl_seconds))

    async def delete(self) -> None:
        self._entry = None

    async def health_check(self) -> dict:
        return {"healthy": True, "backend": "memory", "cached": self._entry is not None}


class RedisTokenStore:
    """Shared store keeping the token under a single key with SETEX."""

    def __init__(self, client: FastRedisClient | None = None, key: str = ACCESS_TOKEN_KEY):
        self.client = client or fast_redis
        self.key = key

    async def get(self) -> AccessToken | None:
        raw = await self.client.get(self.key)
        if not raw:
            return None
        try:
            token = AccessToken.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cached token", error=str(e))
            await self.client.delete(self.key)
            return None
        return None if token.is_expired() else token

    async def set(self, token: AccessToken, ttl_seconds: int) -> None:
        stored = await self.client.set_with_ttl(self.key, json.dumps(token.to_dict()), ttl_seconds)
        if not stored:
            logger.warning("Access token could not be cached in Redis")

    async def delete(self) -> None:
        await self.client.delete(self.key)

    async def health_check(self) -> dict:
        ok = await self.client.ping()
        return {"healthy": ok, "backend": "redis"}


def build_token_store() -> TokenStore:
    if settings.REDIS_URL:
        return RedisTokenStore()
    return InMemoryTokenStore()
