from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routes import meetings
from app.services.attendance.errors import FetchError
from tests.fakes import FakeOAuthService, FakeReportService, make_participant

PAGES = [
    {
        "next_page_token": "1",
        "participants": [make_participant("1", "2024-01-01T10:00:00Z", "2024-01-01T11:30:00Z", 5400)],
    },
    {
        "next_page_token": "",
        "participants": [make_participant("2", "2024-01-01T10:30:00Z", "2024-01-01T11:00:00Z", 1800)],
    },
]


def _client(pipeline=None) -> TestClient:
    app = FastAPI()
    app.include_router(meetings.router)
    if pipeline is not None:
        app.state.pipeline = pipeline
    return TestClient(app)


def test_report_is_fetched_and_classified(pipeline_factory, report_dirs):
    transport_pipeline = pipeline_factory(report_service=FakeReportService(pages=PAGES))

    response = _client(transport_pipeline).get("/meetings/123/report/participants")

    assert response.status_code == 200
    data = response.json()
    assert data["message"]
    assert data["meeting_id"] == "123"
    assert data["participant_count"] == 2
    assert data["page_count"] == 2
    assert data["next_page_token"] is None
    assert data["processed_csv_path"] == str(
        report_dirs["processed"] / "processed_123_participants.csv"
    )
    # on-demand reports never email
    assert transport_pipeline.notifier.transport.messages == []


def test_page_token_fetches_one_page(pipeline_factory):
    service = FakeReportService(pages=PAGES)

    response = _client(pipeline_factory(report_service=service)).get(
        "/meetings/123/report/participants", params={"next_page_token": "1"}
    )

    assert response.status_code == 200
    assert response.json()["participant_count"] == 1
    assert [call["next_page_token"] for call in service.calls] == ["1"]


def test_unknown_meeting_keeps_provider_status(pipeline_factory):
    service = FakeReportService(error=FetchError("Meeting does not exist", "999", status_code=404))

    response = _client(pipeline_factory(report_service=service)).get(
        "/meetings/999/report/participants"
    )

    assert response.status_code == 404
    assert "999" in response.json()["detail"]


def test_provider_outage_is_bad_gateway(pipeline_factory):
    service = FakeReportService(error=FetchError("unavailable", "123", status_code=503))

    response = _client(pipeline_factory(report_service=service)).get(
        "/meetings/123/report/participants"
    )

    assert response.status_code == 502


def test_token_failure_is_server_error(pipeline_factory):
    pipeline = pipeline_factory(oauth_service=FakeOAuthService(fail=True))

    response = _client(pipeline).get("/meetings/123/report/participants")

    assert response.status_code == 500
    assert response.json()["detail"] == "Error fetching token"


def test_pipeline_not_initialized():
    response = _client().get("/meetings/123/report/participants")

    assert response.status_code == 503
