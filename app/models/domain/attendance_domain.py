# app/models/domain/attendance_domain.py
"""
Attendance Domain Models
Value objects passed through the webhook -> report -> classification pipeline.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

URL_VALIDATION_EVENT = "endpoint.url_validation"
MEETING_ENDED_EVENT = "meeting.ended"

PARTICIPANT_FIELDS = ["id", "name", "user_email", "join_time", "leave_time", "duration"]
PROCESSED_FIELDS = [*PARTICIPANT_FIELDS, "Status"]


class EventType(str, Enum):
    URL_VALIDATION = "url_validation"
    MEETING_ENDED = "meeting_ended"
    OTHER = "other"

    @classmethod
    def from_event_name(cls, name: str | None) -> "EventType":
        if name == URL_VALIDATION_EVENT:
            return cls.URL_VALIDATION
        if name == MEETING_ENDED_EVENT:
            return cls.MEETING_ENDED
        return cls.OTHER


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    ABSENT = "Absent"
    INVALID = "Invalid"  # join/leave time could not be parsed


@dataclass(slots=True, frozen=True)
class WebhookEvent:
    """One inbound webhook delivery. Never persisted."""

    event_type: EventType
    event_name: str
    timestamp: str
    raw_body: bytes
    signature_header: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AccessToken:
    """Provider bearer token with an explicit expiry."""

    value: str
    issued_at: datetime
    ttl_seconds: int = 3600

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "issued_at": self.issued_at.isoformat(),
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AccessToken":
        return cls(
            value=data["value"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            ttl_seconds=int(data.get("ttl_seconds", 3600)),
        )


@dataclass(slots=True, frozen=True)
class MeetingDetails:
    """Meeting metadata taken from the meeting.ended payload."""

    meeting_id: str
    topic: str = ""
    start_time: str = ""
    end_time: str = ""
    duration: Any = None

    @classmethod
    def from_payload_object(cls, obj: dict) -> "MeetingDetails":
        meeting_id = obj.get("id")
        if meeting_id in (None, ""):
            raise ValueError("meeting payload is missing object.id")
        return cls(
            meeting_id=str(meeting_id),
            topic=obj.get("topic") or "",
            start_time=obj.get("start_time") or "",
            end_time=obj.get("end_time") or "",
            duration=obj.get("duration"),
        )

    @property
    def delivery_key(self) -> str:
        """Identifies one occurrence of a meeting for single delivery."""
        return f"{self.meeting_id}:{self.start_time}"


@dataclass(slots=True, frozen=True)
class ParticipantRecord:
    """One attendee row of the intermediate participants CSV."""

    id: str
    name: str
    user_email: str
    join_time: str
    leave_time: str
    duration: str

    @classmethod
    def from_row(cls, row: dict[str, str]) -> "ParticipantRecord":
        return cls(**{name: (row.get(name) or "") for name in PARTICIPANT_FIELDS})

    def to_row(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in PARTICIPANT_FIELDS}


@dataclass(slots=True, frozen=True)
class ClassifiedParticipantRecord:
    record: ParticipantRecord
    status: AttendanceStatus
    late_minutes: int | None = None
    attended_minutes: int | None = None

    def to_row(self) -> dict[str, str]:
        row = self.record.to_row()
        row["Status"] = self.status.value
        return row


@dataclass(slots=True)
class ReportArtifacts:
    """Paths produced for one meeting's report."""

    meeting_id: str
    raw_json_path: str
    participants_csv_path: str
    processed_csv_path: str | None = None
    participant_count: int = 0
    page_count: int = 1
    next_page_token: str | None = None
