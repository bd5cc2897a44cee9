"""
Low-level client for the Zoom reporting API.
Fetches meeting participant reports page by page.
"""

import asyncio
from urllib.parse import quote

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.attendance.errors import FetchError

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 1
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


def encode_meeting_id(meeting_id: str) -> str:
    """
    Encode a meeting id or UUID for use in a path segment.

    Zoom requires UUIDs that begin with "/" or contain "//" to be encoded twice.
    """
    meeting_id = str(meeting_id)
    encoded = quote(meeting_id, safe="")
    if meeting_id.startswith("/") or "//" in meeting_id:
        encoded = quote(encoded, safe="")
    return encoded


class ZoomReportService:
    """Participant report requests with retry on transient failures."""

    def __init__(self, client: httpx.AsyncClient | None = None, base_url: str | None = None):
        self.base_url = (base_url or settings.ZOOM_API_BASE_URL).rstrip("/")
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        await self._client.aclose()

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.warning(
                        "Zoom API transient status, retrying",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.warning(
                    "Zoom API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Zoom API retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, meeting_id: str) -> dict:
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                raise FetchError(
                    f"Invalid participants report format: {e}", meeting_id=meeting_id
                ) from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {"raw": response.text[:200] if response.text else ""}

        logger.error(
            "Zoom participants report request failed",
            meeting_id=meeting_id,
            status_code=response.status_code,
            error_code=error_data.get("code"),
            error_message=error_data.get("message"),
        )
        raise FetchError(
            f"Participants report request failed (HTTP {response.status_code}): "
            f"{error_data.get('message', 'unknown error')}",
            meeting_id=meeting_id,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def get_participants_page(
        self,
        meeting_id: str,
        access_token: str,
        next_page_token: str | None = None,
        page_size: int | None = None,
    ) -> dict:
        """
        Fetch one page of GET /report/meetings/{id}/participants.

        Raises:
            FetchError: On transport failure or any non-2xx response
        """
        url = f"{self.base_url}/report/meetings/{encode_meeting_id(meeting_id)}/participants"
        params = {"page_size": page_size or settings.REPORT_PAGE_SIZE}
        if next_page_token:
            params["next_page_token"] = next_page_token

        logger.info(
            "Fetching participants report",
            meeting_id=meeting_id,
            has_page_token=bool(next_page_token),
        )

        try:
            response = await self._request_with_retry(
                "GET", url, headers=self._get_auth_headers(access_token), params=params
            )
        except httpx.RequestError as e:
            logger.error(
                "Network error fetching participants report",
                meeting_id=meeting_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise FetchError(f"Network error fetching report: {e}", meeting_id=meeting_id) from e

        return self._handle_api_response(response, meeting_id)
