"""
Report Fetcher
Downloads a meeting's participant report, stores the raw JSON and writes the
duration-normalized intermediate CSV consumed by the classifier.
"""

import asyncio
import json
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.attendance_domain import (
    PARTICIPANT_FIELDS,
    ParticipantRecord,
    ReportArtifacts,
)
from app.services.attendance.errors import FetchError
from app.services.zoom.report_client import ZoomReportService
from app.utils.report_files import render_csv, round_half_up, write_text_atomic

logger = get_logger(__name__)


def raw_report_filename(meeting_id: str) -> str:
    return f"{meeting_id}_participants.json"


def participants_csv_filename(meeting_id: str) -> str:
    return f"{meeting_id}_participants.csv"


def seconds_to_minutes(value) -> str:
    """Convert a duration in seconds to whole minutes; blank when not numeric."""
    try:
        return str(round_half_up(float(value) / 60))
    except (TypeError, ValueError):
        return ""


def build_participant_records(report: dict) -> list[ParticipantRecord]:
    records = []
    for participant in report.get("participants") or []:
        row = {name: participant.get(name) for name in PARTICIPANT_FIELDS}
        row["duration"] = seconds_to_minutes(participant.get("duration"))
        records.append(
            ParticipantRecord.from_row({k: "" if v is None else str(v) for k, v in row.items()})
        )
    return records


class ReportFetcher:
    def __init__(
        self,
        report_service: ZoomReportService,
        raw_dir: str | Path | None = None,
        csv_dir: str | Path | None = None,
    ):
        self.report_service = report_service
        self.raw_dir = Path(raw_dir or settings.RAW_REPORT_DIR)
        self.csv_dir = Path(csv_dir or settings.PARTICIPANTS_CSV_DIR)

    async def fetch_participants(
        self, meeting_id: str, access_token: str, next_page_token: str | None = None
    ) -> dict:
        """Single page of the participants report."""
        return await self.report_service.get_participants_page(
            meeting_id, access_token, next_page_token=next_page_token
        )

    async def fetch_full_report(
        self, meeting_id: str, access_token: str, max_pages: int | None = None
    ) -> tuple[dict, int]:
        """
        Follow next_page_token until exhausted or max_pages is reached.

        Returns:
            The first page payload with participants merged from every page,
            and the number of pages fetched.
        """
        max_pages = max_pages or settings.REPORT_MAX_PAGES
        report = await self.fetch_participants(meeting_id, access_token)
        participants = list(report.get("participants") or [])
        pages = 1
        next_token = report.get("next_page_token")

        while next_token and pages < max_pages:
            page = await self.fetch_participants(meeting_id, access_token, next_token)
            participants.extend(page.get("participants") or [])
            next_token = page.get("next_page_token")
            pages += 1

        if next_token:
            logger.warning(
                "Participants report truncated at page limit",
                meeting_id=meeting_id,
                max_pages=max_pages,
            )

        merged = dict(report)
        merged["participants"] = participants
        merged["next_page_token"] = next_token or ""
        return merged, pages

    def save_raw_report(self, meeting_id: str, report: dict) -> str:
        path = self.raw_dir / raw_report_filename(meeting_id)
        write_text_atomic(path, json.dumps(report, indent=2))
        logger.info("JSON data saved", meeting_id=meeting_id, path=str(path))
        return str(path)

    def write_participants_csv(self, meeting_id: str, records: list[ParticipantRecord]) -> str:
        path = self.csv_dir / participants_csv_filename(meeting_id)
        write_text_atomic(path, render_csv(PARTICIPANT_FIELDS, [r.to_row() for r in records]))
        logger.info("CSV data saved", meeting_id=meeting_id, path=str(path), rows=len(records))
        return str(path)

    async def fetch_and_persist(
        self,
        meeting_id: str,
        access_token: str,
        next_page_token: str | None = None,
        fetch_all_pages: bool | None = None,
    ) -> ReportArtifacts:
        """
        Fetch the report and write the raw JSON and intermediate CSV.

        A caller-supplied next_page_token fetches exactly that page.

        Raises:
            FetchError: Provider error or the files could not be written
        """
        if fetch_all_pages is None:
            fetch_all_pages = settings.REPORT_FETCH_ALL_PAGES

        if fetch_all_pages and not next_page_token:
            report, pages = await self.fetch_full_report(meeting_id, access_token)
        else:
            report = await self.fetch_participants(meeting_id, access_token, next_page_token)
            pages = 1

        records = build_participant_records(report)

        try:
            raw_path = await asyncio.to_thread(self.save_raw_report, meeting_id, report)
            csv_path = await asyncio.to_thread(self.write_participants_csv, meeting_id, records)
        except OSError as e:
            raise FetchError(f"Could not persist participants report: {e}", meeting_id) from e

        return ReportArtifacts(
            meeting_id=meeting_id,
            raw_json_path=raw_path,
            participants_csv_path=csv_path,
            participant_count=len(records),
            page_count=pages,
            next_page_token=report.get("next_page_token") or None,
        )
