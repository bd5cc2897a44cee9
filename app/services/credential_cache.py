"""
Credential cache for the Zoom API access token.

Returns the cached token while it is valid and fetches a new one from the
OAuth endpoint otherwise. Refreshes are serialized so concurrent pipelines
issue at most one token request at a time.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.attendance_domain import AccessToken
from app.services.token_store import TokenStore
from app.services.zoom.oauth_client import ZoomOAuthError, ZoomOAuthService

logger = get_logger(__name__)


class CredentialCache:
    def __init__(
        self,
        store: TokenStore,
        oauth_service: ZoomOAuthService,
        ttl_seconds: int | None = None,
    ):
        self.store = store
        self.oauth_service = oauth_service
        self.ttl_seconds = ttl_seconds or settings.ACCESS_TOKEN_TTL_SECONDS
        self._refresh_lock = asyncio.Lock()

    async def get_token(self) -> AccessToken | None:
        """
        Get a valid access token.

        Returns:
            AccessToken, or None when the OAuth request failed. Callers treat
            None as fatal for the current pipeline run.
        """
        token = await self.store.get()
        if token is not None:
            return token

        async with self._refresh_lock:
            # Another coroutine may have refreshed while we waited
            token = await self.store.get()
            if token is not None:
                return token
            return await self._refresh()

    async def _refresh(self) -> AccessToken | None:
        try:
            response = await self.oauth_service.request_access_token()
        except ZoomOAuthError as e:
            logger.error(
                "Failed to get Zoom access token",
                error=str(e),
                status_code=e.status_code,
            )
            return None

        token = AccessToken(
            value=response.access_token,
            issued_at=datetime.now(UTC),
            ttl_seconds=self.ttl_seconds,
        )
        await self.store.set(token, self.ttl_seconds)
        logger.info("Access token refreshed", ttl_seconds=self.ttl_seconds)
        return token

    async def invalidate(self) -> None:
        """Drop the cached token (process shutdown)."""
        await self.store.delete()
        logger.info("Cached access token invalidated")
