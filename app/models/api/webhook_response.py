# models/api/webhook_response.py
"""
Response models for the webhook and on-demand report endpoints.
"""

from pydantic import BaseModel, Field


class UrlValidationResponse(BaseModel):
    """Answer to the endpoint.url_validation challenge (camelCase per Zoom)."""

    plainToken: str = Field(..., description="Token received in the challenge")
    encryptedToken: str = Field(..., description="Hex HMAC-SHA256 of plainToken")


class ParticipantsReportResponse(BaseModel):
    """Files produced by an on-demand participants report run."""

    message: str = Field(default="Files saved successfully")
    meeting_id: str
    json_file_path: str
    csv_file_path: str
    processed_csv_path: str | None = None
    participant_count: int = 0
    page_count: int = 1
    next_page_token: str | None = Field(
        default=None, description="Set when more participant pages remain"
    )
