"""
On-demand participants report for a meeting.
Runs fetch and classification without sending the notification email.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.webhook_response import ParticipantsReportResponse
from app.routes.webhook import get_pipeline
from app.services.attendance.errors import (
    AttendancePipelineError,
    CredentialError,
    FetchError,
)
from app.services.attendance.pipeline import AttendancePipeline

logger = get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.get("/{meeting_id}/report/participants", response_model=ParticipantsReportResponse)
async def get_participants_report(
    meeting_id: str,
    next_page_token: str | None = Query(default=None),
    pipeline: AttendancePipeline | None = Depends(get_pipeline),
):
    """Fetch, store and classify the participants report for one meeting."""
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attendance pipeline not initialized",
        )

    try:
        artifacts = await pipeline.generate_report(meeting_id, next_page_token=next_page_token)
    except CredentialError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error fetching token"
        ) from e
    except FetchError as e:
        # provider client errors (e.g. unknown meeting) keep their status
        code = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        raise HTTPException(
            status_code=code, detail=f"Error fetching participants for meeting: {meeting_id}"
        ) from e
    except AttendancePipelineError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e

    return ParticipantsReportResponse(
        meeting_id=meeting_id,
        json_file_path=artifacts.raw_json_path,
        csv_file_path=artifacts.participants_csv_path,
        processed_csv_path=artifacts.processed_csv_path,
        participant_count=artifacts.participant_count,
        page_count=artifacts.page_count,
        next_page_token=artifacts.next_page_token,
    )
