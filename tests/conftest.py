import pytest

from app.services.attendance.pipeline import AttendancePipeline
from app.services.attendance.report_fetcher import ReportFetcher
from app.services.credential_cache import CredentialCache
from app.services.notification.delivery_ledger import InMemoryDeliveryLedger
from app.services.notification.email_service import EmailNotifier
from app.services.token_store import InMemoryTokenStore
from tests.fakes import (
    WEBHOOK_SECRET,
    FakeOAuthService,
    FakeRedis,
    FakeReportService,
    RecordingTransport,
)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def report_dirs(tmp_path):
    dirs = {
        "raw": tmp_path / "downloads",
        "participants": tmp_path / "savedCsv",
        "processed": tmp_path / "csvProcessed",
    }
    for path in dirs.values():
        path.mkdir()
    return dirs


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr("app.config.settings.ZOOM_WEBHOOK_SECRET_TOKEN", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest.fixture
def pipeline_factory(report_dirs):
    def _build(
        oauth_service=None,
        report_service=None,
        transport=None,
        watcher_delivery: bool = False,
    ) -> AttendancePipeline:
        cache = CredentialCache(InMemoryTokenStore(), oauth_service or FakeOAuthService())
        fetcher = ReportFetcher(
            report_service or FakeReportService(),
            raw_dir=report_dirs["raw"],
            csv_dir=report_dirs["participants"],
        )
        notifier = EmailNotifier(
            ledger=InMemoryDeliveryLedger(ttl_seconds=3600),
            transport=transport or RecordingTransport(),
            recipients=["attendance@example.com"],
            watcher_delivery=watcher_delivery,
        )
        return AttendancePipeline(cache, fetcher, notifier, processed_dir=report_dirs["processed"])

    return _build
