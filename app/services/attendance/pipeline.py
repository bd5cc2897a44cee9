"""
Attendance pipeline: token -> fetch -> classify -> notify for one meeting.

Runs are single-flight per meeting id: a duplicate meeting.ended delivery or
an overlapping on-demand request joins the run already in progress, and runs
for different pages of one meeting take turns writing its files.
"""

import asyncio
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import bind_meeting, get_logger, log_pipeline_stage
from app.models.domain.attendance_domain import MeetingDetails, ReportArtifacts
from app.services.attendance.classifier import classify, processed_filename
from app.services.attendance.errors import (
    AttendancePipelineError,
    ClassificationError,
    CredentialError,
)
from app.services.attendance.report_fetcher import ReportFetcher, participants_csv_filename
from app.services.credential_cache import CredentialCache
from app.services.notification.delivery_ledger import build_delivery_ledger
from app.services.notification.email_service import EmailNotifier
from app.services.token_store import build_token_store
from app.services.zoom.oauth_client import ZoomOAuthService
from app.services.zoom.report_client import ZoomReportService

logger = get_logger(__name__)


FlightKey = tuple[str, str | None]


class AttendancePipeline:
    def __init__(
        self,
        credential_cache: CredentialCache,
        report_fetcher: ReportFetcher,
        notifier: EmailNotifier,
        processed_dir: str | Path | None = None,
    ):
        self.credential_cache = credential_cache
        self.report_fetcher = report_fetcher
        self.notifier = notifier
        self.processed_dir = Path(processed_dir or settings.PROCESSED_CSV_DIR)
        # keyed by (meeting id, page token); webhook runs use no page token
        self._inflight: dict[FlightKey, asyncio.Task] = {}
        # [lock, holders]; serializes runs that write the same meeting's files
        self._meeting_locks: dict[str, list] = {}

    async def generate_report(
        self,
        meeting_id: str,
        next_page_token: str | None = None,
        fetch_all_pages: bool | None = None,
    ) -> ReportArtifacts:
        """
        Fetch, persist and classify a meeting's participants report.

        Joins a run already in flight for the same meeting and page token,
        including one started by a meeting.ended event.

        Raises:
            CredentialError: No access token could be obtained
            FetchError: The provider rejected the report request
            ClassificationError: The processed report could not be produced
        """
        return await self._single_flight(
            (meeting_id, next_page_token),
            lambda: self._generate(meeting_id, next_page_token, fetch_all_pages),
        )

    async def run(self, details: MeetingDetails) -> ReportArtifacts:
        """Process a meeting.ended event, joining an in-flight run for the same meeting."""
        expected_report = processed_filename(participants_csv_filename(details.meeting_id))
        if self.notifier.watcher_delivery:
            # the watcher picks the details up when the processed file lands
            self.notifier.register_pending(expected_report, details)

        try:
            return await self._single_flight(
                (details.meeting_id, None), lambda: self._process(details)
            )
        except AttendancePipelineError:
            self.notifier.discard_pending(expected_report)
            raise

    async def _single_flight(self, key: FlightKey, start) -> ReportArtifacts:
        task = self._inflight.get(key)
        if task is not None:
            logger.info(
                "Joining in-flight pipeline run", meeting_id=key[0], has_page_token=bool(key[1])
            )
        else:
            task = asyncio.create_task(start(), name=f"attendance-{key[0]}")
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))

        # shield: a dropped client connection must not cancel the shared run
        return await asyncio.shield(task)

    def _forget(self, key: FlightKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        # retrieve here too, every awaiter may already be gone
        error = task.exception()
        if error is not None and not isinstance(error, AttendancePipelineError):
            logger.error(
                "Pipeline run crashed",
                meeting_id=key[0],
                error=str(error),
                error_type=type(error).__name__,
            )

    async def _process(self, details: MeetingDetails) -> ReportArtifacts:
        logger.info(
            "Processing ended meeting",
            meeting_id=details.meeting_id,
            topic=details.topic,
            start_time=details.start_time,
            end_time=details.end_time,
            duration=details.duration,
        )
        with bind_meeting(details.meeting_id, trigger="meeting.ended"):
            return await self._generate(details.meeting_id)

    async def _generate(
        self,
        meeting_id: str,
        next_page_token: str | None = None,
        fetch_all_pages: bool | None = None,
    ) -> ReportArtifacts:
        entry = self._meeting_locks.setdefault(meeting_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                return await self._fetch_and_classify(meeting_id, next_page_token, fetch_all_pages)
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._meeting_locks[meeting_id]

    async def _fetch_and_classify(
        self,
        meeting_id: str,
        next_page_token: str | None,
        fetch_all_pages: bool | None,
    ) -> ReportArtifacts:
        try:
            token = await self.credential_cache.get_token()
            if token is None:
                raise CredentialError("Failed to get access token", meeting_id)
            log_pipeline_stage(meeting_id, "token", ok=True)

            artifacts = await self.report_fetcher.fetch_and_persist(
                meeting_id,
                token.value,
                next_page_token=next_page_token,
                fetch_all_pages=fetch_all_pages,
            )
            log_pipeline_stage(
                meeting_id,
                "fetch",
                ok=True,
                participants=artifacts.participant_count,
                pages=artifacts.page_count,
            )

            try:
                artifacts.processed_csv_path = await asyncio.to_thread(
                    classify, artifacts.participants_csv_path, self.processed_dir
                )
            except ClassificationError as e:
                e.meeting_id = meeting_id
                raise
            log_pipeline_stage(meeting_id, "classify", ok=True, path=artifacts.processed_csv_path)
            return artifacts

        except AttendancePipelineError as e:
            e.meeting_id = e.meeting_id or meeting_id
            log_pipeline_stage(meeting_id, e.stage, ok=False, error=str(e))
            raise

    async def notify(self, artifacts: ReportArtifacts, details: MeetingDetails) -> bool:
        """Direct delivery path; a no-op when the watcher owns delivery."""
        if self.notifier.watcher_delivery:
            return False
        if not artifacts.processed_csv_path:
            logger.error("Processed file path is undefined", meeting_id=details.meeting_id)
            return False
        return await self.notifier.send_report_email(artifacts.processed_csv_path, details)

    async def close(self) -> None:
        await self.credential_cache.invalidate()
        await self.credential_cache.oauth_service.close()
        await self.report_fetcher.report_service.close()


def build_attendance_pipeline() -> AttendancePipeline:
    credential_cache = CredentialCache(build_token_store(), ZoomOAuthService())
    report_fetcher = ReportFetcher(ZoomReportService())
    notifier = EmailNotifier(ledger=build_delivery_ledger())
    return AttendancePipeline(credential_cache, report_fetcher, notifier)
