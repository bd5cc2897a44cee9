"""Failures raised by the attendance pipeline, tagged with meeting and stage."""


class AttendancePipelineError(Exception):
    stage = "pipeline"

    def __init__(self, message: str, meeting_id: str | None = None):
        super().__init__(message)
        self.meeting_id = meeting_id


class CredentialError(AttendancePipelineError):
    stage = "token"


class FetchError(AttendancePipelineError):
    stage = "fetch"

    def __init__(
        self,
        message: str,
        meeting_id: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message, meeting_id)
        self.status_code = status_code
        self.response_data = response_data or {}


class ClassificationError(AttendancePipelineError):
    stage = "classify"


class NotificationError(AttendancePipelineError):
    stage = "notify"
