import asyncio
import csv
import gc
import os

import pytest

from app.jobs.report_watcher import ReportWatcher
from app.models.domain.attendance_domain import MeetingDetails
from app.services.attendance.errors import ClassificationError, CredentialError, FetchError
from tests.fakes import FakeOAuthService, FakeReportService, RecordingTransport, make_participant

DETAILS = MeetingDetails(
    meeting_id="123",
    topic="Standup",
    start_time="2024-01-01T10:00:00Z",
    end_time="2024-01-01T11:00:00Z",
    duration=3600,
)


def _report():
    return {
        "next_page_token": "",
        "participants": [
            make_participant("1", "2024-01-01T10:00:00Z", "2024-01-01T11:30:00Z", 5400),
            make_participant("2", "2024-01-01T10:15:00Z", "2024-01-01T11:50:00Z", 5700),
        ],
    }


class SlowReportService(FakeReportService):
    async def get_participants_page(self, *args, **kwargs):
        await asyncio.sleep(0.02)
        return await super().get_participants_page(*args, **kwargs)


@pytest.mark.asyncio
async def test_generate_report_produces_three_files(pipeline_factory, report_dirs):
    pipeline = pipeline_factory(report_service=FakeReportService(pages=[_report()]))

    artifacts = await pipeline.generate_report("123")

    assert artifacts.processed_csv_path == str(
        report_dirs["processed"] / "processed_123_participants.csv"
    )
    with open(artifacts.processed_csv_path, newline="", encoding="utf-8") as fh:
        statuses = [row["Status"] for row in csv.DictReader(fh)]
    assert statuses == ["Present", "Absent"]
    assert (report_dirs["raw"] / "123_participants.json").exists()
    assert (report_dirs["participants"] / "123_participants.csv").exists()


@pytest.mark.asyncio
async def test_credential_failure_skips_fetch(pipeline_factory, report_dirs):
    service = FakeReportService(pages=[_report()])
    pipeline = pipeline_factory(oauth_service=FakeOAuthService(fail=True), report_service=service)

    with pytest.raises(CredentialError) as exc_info:
        await pipeline.generate_report("123")

    assert exc_info.value.meeting_id == "123"
    assert exc_info.value.stage == "token"
    assert service.calls == []
    assert list(report_dirs["raw"].iterdir()) == []


@pytest.mark.asyncio
async def test_fetch_failure_leaves_no_processed_file(pipeline_factory, report_dirs):
    service = FakeReportService(error=FetchError("boom", "123", status_code=500))
    pipeline = pipeline_factory(report_service=service)

    with pytest.raises(FetchError):
        await pipeline.generate_report("123")

    assert list(report_dirs["processed"].iterdir()) == []


@pytest.mark.asyncio
async def test_classification_failure_is_tagged_with_meeting(pipeline_factory, monkeypatch):
    def broken(*args, **kwargs):
        raise ClassificationError("cannot read")

    monkeypatch.setattr("app.services.attendance.pipeline.classify", broken)
    pipeline = pipeline_factory(report_service=FakeReportService(pages=[_report()]))

    with pytest.raises(ClassificationError) as exc_info:
        await pipeline.generate_report("123")

    assert exc_info.value.meeting_id == "123"


@pytest.mark.asyncio
async def test_duplicate_runs_share_one_fetch_and_one_email(pipeline_factory):
    service = SlowReportService(pages=[_report()])
    transport = RecordingTransport()
    pipeline = pipeline_factory(report_service=service, transport=transport)

    first, second = await asyncio.gather(pipeline.run(DETAILS), pipeline.run(DETAILS))
    sent = await asyncio.gather(pipeline.notify(first, DETAILS), pipeline.notify(second, DETAILS))

    assert first is second
    assert len(service.calls) == 1
    assert sorted(sent) == [False, True]
    assert len(transport.messages) == 1


@pytest.mark.asyncio
async def test_redelivery_after_completion_does_not_email_twice(pipeline_factory):
    transport = RecordingTransport()
    pipeline = pipeline_factory(
        report_service=FakeReportService(pages=[_report()]), transport=transport
    )

    for _ in range(2):
        artifacts = await pipeline.run(DETAILS)
        await pipeline.notify(artifacts, DETAILS)

    assert len(transport.messages) == 1


@pytest.mark.asyncio
async def test_notify_is_skipped_when_watcher_owns_delivery(pipeline_factory):
    transport = RecordingTransport()
    pipeline = pipeline_factory(
        report_service=FakeReportService(pages=[_report()]),
        transport=transport,
        watcher_delivery=True,
    )

    artifacts = await pipeline.run(DETAILS)

    assert await pipeline.notify(artifacts, DETAILS) is False
    assert transport.messages == []
    # the watcher later finds the file and uses the registered details
    assert await pipeline.notifier.handle_new_report(artifacts.processed_csv_path) is True
    assert "Standup" in transport.messages[0].as_string()


@pytest.mark.asyncio
async def test_failed_run_discards_pending_watcher_details(pipeline_factory):
    pipeline = pipeline_factory(
        oauth_service=FakeOAuthService(fail=True), watcher_delivery=True
    )

    with pytest.raises(CredentialError):
        await pipeline.run(DETAILS)

    assert pipeline.notifier._pending == {}


@pytest.mark.asyncio
async def test_close_releases_clients(pipeline_factory):
    oauth = FakeOAuthService()
    service = FakeReportService()
    pipeline = pipeline_factory(oauth_service=oauth, report_service=service)

    await pipeline.close()

    assert oauth.closed and service.closed


@pytest.mark.asyncio
async def test_on_demand_rewrite_is_not_emailed_by_watcher(pipeline_factory, report_dirs):
    transport = RecordingTransport()
    pipeline = pipeline_factory(
        report_service=FakeReportService(pages=[_report()]),
        transport=transport,
        watcher_delivery=True,
    )
    watcher = ReportWatcher(
        report_dirs["processed"], pipeline.notifier.handle_new_report, poll_interval=60
    )
    await watcher.start()
    try:
        await pipeline.run(DETAILS)
        await watcher.poll_once()

        artifacts = await pipeline.generate_report("123")
        # force a visible mtime change for the rewritten report
        processed = report_dirs["processed"] / "processed_123_participants.csv"
        stat = processed.stat()
        os.utime(processed, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        reported = await watcher.poll_once()
    finally:
        await watcher.stop()

    assert artifacts.processed_csv_path == str(processed)
    assert [path.name for path in reported] == ["processed_123_participants.csv"]
    assert len(transport.messages) == 1
    assert "Standup" in transport.messages[0].as_string()


@pytest.mark.asyncio
async def test_on_demand_request_joins_webhook_run(pipeline_factory):
    service = SlowReportService(pages=[_report()])
    pipeline = pipeline_factory(report_service=service)

    from_webhook, on_demand = await asyncio.gather(
        pipeline.run(DETAILS), pipeline.generate_report("123")
    )

    assert len(service.calls) == 1
    assert on_demand is from_webhook
    assert pipeline._inflight == {}


@pytest.mark.asyncio
async def test_paged_request_waits_for_running_meeting(pipeline_factory):
    pages = [
        {"next_page_token": "1", "participants": _report()["participants"][:1]},
        {"next_page_token": "", "participants": _report()["participants"][1:]},
    ]
    active = []
    overlaps = []

    class TrackingService(FakeReportService):
        async def get_participants_page(self, meeting_id, *args, **kwargs):
            if active:
                overlaps.append(meeting_id)
            active.append(meeting_id)
            await asyncio.sleep(0.02)
            active.pop()
            return await super().get_participants_page(meeting_id, *args, **kwargs)

    service = TrackingService(pages=pages)
    pipeline = pipeline_factory(report_service=service)

    await asyncio.gather(
        pipeline.generate_report("123", fetch_all_pages=False),
        pipeline.generate_report("123", next_page_token="1"),
    )

    assert len(service.calls) == 2
    assert overlaps == []
    assert pipeline._meeting_locks == {}


@pytest.mark.asyncio
async def test_failed_run_with_cancelled_callers_leaves_no_unretrieved_error(pipeline_factory):
    class FailingService(FakeReportService):
        async def get_participants_page(self, *args, **kwargs):
            await asyncio.sleep(0.02)
            raise RuntimeError("report service crashed")

    pipeline = pipeline_factory(report_service=FailingService())
    loop = asyncio.get_running_loop()
    reported = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    try:
        caller = asyncio.create_task(pipeline.run(DETAILS))
        await asyncio.sleep(0)
        shared = pipeline._inflight[("123", None)]
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await asyncio.wait([shared])
        assert pipeline._inflight == {}
        del shared
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(previous_handler)

    assert reported == []
