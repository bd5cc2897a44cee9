"""
Zoom webhook endpoint.

Verifies the signature of every delivery, answers the URL validation
challenge and runs the attendance pipeline for meeting.ended events.
"""

import json

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.api.webhook_request import ZoomWebhookEnvelope
from app.models.api.webhook_response import UrlValidationResponse
from app.models.domain.attendance_domain import EventType, MeetingDetails, WebhookEvent
from app.security.signature import SignatureError, build_validation_response, verify_signature
from app.services.attendance.errors import AttendancePipelineError, CredentialError
from app.services.attendance.pipeline import AttendancePipeline

logger = get_logger(__name__)

router = APIRouter(tags=["webhook"])

ZOOM_TIMESTAMP_HEADER = "x-zm-request-timestamp"
ZOOM_SIGNATURE_HEADER = "x-zm-signature"


def get_pipeline(request: Request) -> AttendancePipeline | None:
    return getattr(request.app.state, "pipeline", None)


def _is_authentic(raw: bytes, timestamp: str | None, signature: str | None) -> bool:
    try:
        return verify_signature(raw, timestamp, signature, settings.ZOOM_WEBHOOK_SECRET_TOKEN)
    except SignatureError as e:
        logger.error("Webhook secret not configured", error=str(e))
        return False


def _parse_event(raw: bytes, timestamp: str, signature: str) -> WebhookEvent:
    try:
        envelope = ZoomWebhookEnvelope.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook payload"
        ) from e

    return WebhookEvent(
        event_type=EventType.from_event_name(envelope.event),
        event_name=envelope.event,
        timestamp=timestamp,
        raw_body=raw,
        signature_header=signature,
        payload=envelope.payload,
    )


@router.post("/webhook")
async def zoom_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: AttendancePipeline | None = Depends(get_pipeline),
):
    raw = await request.body()
    timestamp = request.headers.get(ZOOM_TIMESTAMP_HEADER)
    signature = request.headers.get(ZOOM_SIGNATURE_HEADER)

    if not _is_authentic(raw, timestamp, signature):
        logger.warning("Rejected webhook with invalid signature", has_signature=bool(signature))
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"message": "Unauthorized request to Zoom Webhook sample."},
        )

    event = _parse_event(raw, timestamp, signature)
    logger.info("Webhook verified", event_name=event.event_name)

    if event.event_type is EventType.URL_VALIDATION:
        plain_token = event.payload.get("plainToken")
        if not isinstance(plain_token, str) or not plain_token:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing plainToken")
        return UrlValidationResponse(
            **build_validation_response(plain_token, settings.ZOOM_WEBHOOK_SECRET_TOKEN)
        )

    if event.event_type is not EventType.MEETING_ENDED:
        logger.info("Webhook event acknowledged without processing", event_name=event.event_name)
        return PlainTextResponse("Event acknowledged")

    meeting = event.payload.get("object")
    try:
        details = MeetingDetails.from_payload_object(meeting if isinstance(meeting, dict) else {})
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    if pipeline is None:
        logger.error("Attendance pipeline not initialized", meeting_id=details.meeting_id)
        return PlainTextResponse("Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        artifacts = await pipeline.run(details)
    except CredentialError:
        return PlainTextResponse(
            "Error fetching token or meeting ID",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    except AttendancePipelineError as e:
        logger.error(
            "Error in webhook handling",
            meeting_id=details.meeting_id,
            stage=e.stage,
            error=str(e),
        )
        return PlainTextResponse("Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    # email goes out after the response is sent
    background_tasks.add_task(pipeline.notify, artifacts, details)
    return PlainTextResponse("Webhook received and processed")
