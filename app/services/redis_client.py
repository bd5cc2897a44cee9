# app/services/redis_client.py
"""
Shared async Redis connection for the optional cross-process stores
(access token cache and email delivery ledger).

Every operation degrades to a falsy result on Redis errors; callers decide
whether that means "cache miss" or "do not proceed".
"""

from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 10
SOCKET_TIMEOUT = 10  # seconds


class FastRedisClient:
    """Lazily initialized pooled client; configured from REDIS_URL."""

    def __init__(self, url: str | None = None):
        self.url = url
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def configured(self) -> bool:
        return bool(self._resolve_url())

    def _resolve_url(self) -> str | None:
        return self.url or settings.REDIS_URL

    async def initialize(self) -> None:
        if self._initialized:
            return

        redis_url = self._resolve_url()
        if not redis_url:
            raise RuntimeError("REDIS_URL is not configured")

        self.pool = ConnectionPool.from_url(
            redis_url,
            max_connections=MAX_CONNECTIONS,
            retry_on_timeout=True,
            socket_connect_timeout=SOCKET_TIMEOUT,
            socket_timeout=SOCKET_TIMEOUT,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except Exception as e:
            logger.error("Redis connection check failed", error=str(e))
            await self.close()
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info("Redis client initialized", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        try:
            if self.client is not None:
                await self.client.aclose()
            if self.pool is not None:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self.client = None
            self.pool = None
            self._initialized = False

    async def _execute(
        self,
        operation: str,
        command: Callable[[redis.Redis], Awaitable[Any]],
        key: str | None = None,
        default: Any = None,
    ) -> Any:
        try:
            if not self._initialized:
                await self.initialize()
            return await command(self.client)
        except Exception as e:
            logger.error(
                "Redis command failed",
                operation=operation,
                key=key[:40] if key else None,
                error=str(e),
            )
            return default

    async def ping(self) -> bool:
        return bool(await self._execute("PING", lambda c: c.ping(), default=False))

    async def get(self, key: str) -> str | None:
        return await self._execute("GET", lambda c: c.get(key), key) or None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if ttl_s:
            result = await self._execute("SETEX", lambda c: c.setex(key, ttl_s, value), key)
        else:
            result = await self._execute("SET", lambda c: c.set(key, value), key)
        return bool(result)

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """SET NX EX; True only for the caller that created the key."""
        result = await self._execute(
            "SET NX", lambda c: c.set(key, value, ex=ttl_s, nx=True), key
        )
        return bool(result)

    async def delete(self, key: str) -> bool:
        deleted = await self._execute("DEL", lambda c: c.delete(key), key, default=0)
        return deleted > 0


fast_redis = FastRedisClient()
