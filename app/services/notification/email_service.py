"""
Email notification for processed attendance reports.

Builds an HTML summary of the meeting, attaches the processed CSV and sends
it to the configured distribution list over SMTP. Failures are logged and
never propagate to the request path or the report watcher.
"""

import asyncio
import html
import os
import smtplib
from collections.abc import Callable
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.attendance_domain import MeetingDetails
from app.services.attendance.errors import NotificationError
from app.services.notification.delivery_ledger import DeliveryLedger, InMemoryDeliveryLedger

logger = get_logger(__name__)

SMTP_TIMEOUT = 30  # seconds

Transport = Callable[[MIMEMultipart], None]


def build_email_body(details: MeetingDetails) -> str:
    def _value(value) -> str:
        return html.escape("" if value is None else str(value))

    return f"""
    <h1>Meeting Details</h1>
    <p>Here are the details of the meeting:</p>
    <ul>
        <li>Meeting Topic: {_value(details.topic)}</li>
        <li>Meeting Start Time: {_value(details.start_time)}</li>
        <li>Meeting End Time: {_value(details.end_time)}</li>
        <li>Meeting Duration: {_value(details.duration)}</li>
    </ul>
    <p>Attached you will find the detailed participants report.</p>
    """


def build_message(
    file_path: str | Path,
    email_body: str,
    recipients: list[str],
    sender: str | None = None,
    subject: str | None = None,
) -> MIMEMultipart:
    """Assemble the message; reads the attachment from disk."""
    path = Path(file_path)

    message = MIMEMultipart()
    message["From"] = sender or settings.EMAIL_USER or ""
    message["To"] = ", ".join(recipients)
    message["Subject"] = subject or settings.EMAIL_SUBJECT
    message.attach(MIMEText(email_body, "html"))

    attachment = MIMEApplication(path.read_bytes(), Name=path.name)
    attachment["Content-Disposition"] = f'attachment; filename="{path.name}"'
    message.attach(attachment)
    return message


def smtp_transport(message: MIMEMultipart) -> None:
    """Blocking SMTP send; run it in a worker thread."""
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.EMAIL_USER and settings.EMAIL_PASSWORD:
            server.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
        server.send_message(message)


class EmailNotifier:
    def __init__(
        self,
        ledger: DeliveryLedger | None = None,
        transport: Transport | None = None,
        recipients: list[str] | None = None,
        watcher_delivery: bool | None = None,
    ):
        self.ledger = ledger or InMemoryDeliveryLedger()
        self.transport = transport or smtp_transport
        self.recipients = recipients if recipients is not None else settings.email_recipients()
        self.watcher_delivery = (
            settings.uses_watcher_delivery() if watcher_delivery is None else watcher_delivery
        )
        self._pending: dict[str, MeetingDetails] = {}

    async def send_report_email(self, file_path: str | Path, details: MeetingDetails) -> bool:
        """
        Email a processed report once per meeting occurrence.

        Returns:
            True when the email was handed to the transport
        """
        key = details.delivery_key
        if not await self.ledger.claim(key):
            logger.info(
                "Report already emailed, skipping duplicate",
                meeting_id=details.meeting_id,
                path=str(file_path),
            )
            return False

        try:
            await self._deliver(Path(file_path), details)
        except NotificationError as e:
            await self.ledger.release(key)
            logger.error(
                "Email could not be sent",
                meeting_id=details.meeting_id,
                stage=e.stage,
                path=str(file_path),
                error=str(e),
            )
            return False

        logger.info(
            "Email sent",
            meeting_id=details.meeting_id,
            recipients=len(self.recipients),
            path=str(file_path),
        )
        return True

    async def _deliver(self, path: Path, details: MeetingDetails) -> None:
        if not self.recipients:
            raise NotificationError("No EMAIL_RECIPIENTS configured", details.meeting_id)

        readable = await asyncio.to_thread(os.access, path, os.R_OK)
        if not readable:
            raise NotificationError(
                f"Attachment does not exist or is not readable: {path}", details.meeting_id
            )

        try:
            message = await asyncio.to_thread(
                build_message, path, build_email_body(details), self.recipients
            )
            await asyncio.to_thread(self.transport, message)
        except (OSError, smtplib.SMTPException) as e:
            raise NotificationError(f"{type(e).__name__}: {e}", details.meeting_id) from e

    # Watcher delivery path

    def register_pending(self, file_path: str | Path, details: MeetingDetails) -> None:
        """Remember meeting details until the watcher sees the processed file."""
        self._pending[Path(file_path).name] = details

    def discard_pending(self, file_path: str | Path) -> None:
        self._pending.pop(Path(file_path).name, None)

    async def handle_new_report(self, file_path: str | Path) -> bool:
        """
        Watcher callback for a newly created processed report.

        Only reports registered by a meeting.ended run are emailed; on-demand
        rewrites of the same file are logged and skipped.
        """
        logger.info("File has been added", path=str(file_path))
        if not self.watcher_delivery:
            return False

        details = self._pending.pop(Path(file_path).name, None)
        if details is None:
            logger.info("No pending meeting for report, not emailing", path=str(file_path))
            return False

        return await self.send_report_email(file_path, details)
