# models/api/webhook_request.py
"""
Inbound Zoom webhook envelope.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ZoomWebhookEnvelope(BaseModel):
    """Envelope shared by every Zoom webhook event."""

    model_config = ConfigDict(extra="allow")

    event: str = Field(..., description="Event name, e.g. meeting.ended")
    event_ts: int | None = Field(default=None, description="Event time in epoch milliseconds")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event specific payload")
