"""
Zoom OAuth client for server-to-server (account credentials) access tokens.
"""

import base64

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 10  # seconds


class ZoomOAuthError(Exception):
    """Raised when the Zoom token endpoint cannot issue an access token."""

    def __init__(
        self, message: str, status_code: int | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class ZoomTokenResponse:
    """Structured representation of the Zoom token endpoint response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.token_type = data.get("token_type", "bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

    def is_valid(self) -> bool:
        return bool(self.access_token)


class ZoomOAuthService:
    """Requests access tokens from the Zoom OAuth endpoint."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self.account_id = settings.ZOOM_ACCOUNT_ID
        self.client_id = settings.ZOOM_CLIENT_ID
        self.client_secret = settings.ZOOM_CLIENT_SECRET
        self.token_url = settings.ZOOM_OAUTH_URL
        self.grant_type = settings.ZOOM_OAUTH_GRANT_TYPE
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    def _validate_config(self) -> None:
        if not self.account_id:
            raise ZoomOAuthError("ZOOM_ACCOUNT_ID not configured")
        if not self.client_id:
            raise ZoomOAuthError("ZOOM_CLIENT_ID not configured")
        if not self.client_secret:
            raise ZoomOAuthError("ZOOM_CLIENT_SECRET not configured")

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    async def request_access_token(self) -> ZoomTokenResponse:
        """
        Request a fresh access token.

        Returns:
            ZoomTokenResponse: Parsed token response

        Raises:
            ZoomOAuthError: On misconfiguration, network failure or non-2xx response
        """
        self._validate_config()

        data = {"grant_type": self.grant_type, "account_id": self.account_id}
        headers = {
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            response = await self._client.post(self.token_url, data=data, headers=headers)
        except httpx.RequestError as e:
            logger.error(
                "Network error requesting Zoom access token",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ZoomOAuthError(f"Network error during token request: {e}") from e

        if not response.is_success:
            try:
                error_data = response.json() if response.text else {}
            except ValueError:
                error_data = {"raw": response.text[:200]}

            logger.error(
                "Zoom token request failed",
                status_code=response.status_code,
                error_reason=error_data.get("reason") or error_data.get("error"),
            )
            raise ZoomOAuthError(
                f"Token request failed (HTTP {response.status_code})",
                status_code=response.status_code,
                response_data=error_data,
            )

        try:
            token_response = ZoomTokenResponse(response.json())
        except ValueError as e:
            raise ZoomOAuthError(f"Invalid token response format: {e}") from e

        if not token_response.is_valid():
            raise ZoomOAuthError("Token response did not include an access_token")

        logger.info(
            "Zoom access token issued",
            expires_in=token_response.expires_in,
            scope_count=len(token_response.scope.split()) if token_response.scope else 0,
        )
        return token_response
