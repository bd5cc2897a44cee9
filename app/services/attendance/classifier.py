"""
Attendance Classifier
Turns the intermediate participants CSV into Present/Absent verdicts.

Rules:
- The reference start is the join time of the first row, not the scheduled
  meeting start.
- A participant joining more than LATE_CUTOFF_MINUTES after the reference is late.
- A participant must stay at least PARTICIPATION_CUTOFF_MINUTES (an absolute
  number of minutes, measured from join to leave) to count as present.
- Present iff not late and stayed long enough. Rows whose join or leave time
  cannot be parsed are kept and marked Invalid.
"""

import csv
from datetime import datetime
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.attendance_domain import (
    PROCESSED_FIELDS,
    AttendanceStatus,
    ClassifiedParticipantRecord,
    ParticipantRecord,
)
from app.services.attendance.errors import ClassificationError
from app.utils.report_files import (
    minutes_between,
    parse_iso_timestamp,
    read_csv_rows,
    render_csv,
    round_half_up,
    write_text_atomic,
)

logger = get_logger(__name__)


def processed_filename(csv_path: str | Path) -> str:
    return f"processed_{Path(csv_path).name}"


def reference_start_time(records: list[ParticipantRecord]) -> datetime | None:
    """
    Effective meeting start used for lateness.

    This is the first row's join time. When that value is unreadable the
    first parseable join time stands in; None when no row has one.
    """
    for record in records:
        joined = parse_iso_timestamp(record.join_time)
        if joined is not None:
            return joined
    return None


def classify_record(
    record: ParticipantRecord,
    reference: datetime | None,
    late_cutoff: int | None = None,
    participation_cutoff: int | None = None,
) -> ClassifiedParticipantRecord:
    late_cutoff = settings.LATE_CUTOFF_MINUTES if late_cutoff is None else late_cutoff
    if participation_cutoff is None:
        participation_cutoff = settings.PARTICIPATION_CUTOFF_MINUTES

    join_time = parse_iso_timestamp(record.join_time)
    leave_time = parse_iso_timestamp(record.leave_time)
    if reference is None or join_time is None or leave_time is None:
        return ClassifiedParticipantRecord(record=record, status=AttendanceStatus.INVALID)

    try:
        attended_minutes = round_half_up(minutes_between(join_time, leave_time))
        late_minutes = round_half_up(minutes_between(reference, join_time))
    except TypeError:
        # naive and offset-aware timestamps mixed in one report
        return ClassifiedParticipantRecord(record=record, status=AttendanceStatus.INVALID)

    was_late = late_minutes > late_cutoff
    present_enough = attended_minutes >= participation_cutoff
    status = (
        AttendanceStatus.PRESENT if not was_late and present_enough else AttendanceStatus.ABSENT
    )
    return ClassifiedParticipantRecord(
        record=record,
        status=status,
        late_minutes=late_minutes,
        attended_minutes=attended_minutes,
    )


def classify_records(
    records: list[ParticipantRecord],
    late_cutoff: int | None = None,
    participation_cutoff: int | None = None,
) -> list[ClassifiedParticipantRecord]:
    reference = reference_start_time(records)
    classified = [
        classify_record(record, reference, late_cutoff, participation_cutoff) for record in records
    ]

    invalid = [c.record.id for c in classified if c.status is AttendanceStatus.INVALID]
    if invalid:
        logger.warning(
            "Participant rows with unreadable join/leave time",
            invalid_count=len(invalid),
            participant_ids=invalid[:20],
        )
    return classified


def classify(csv_path: str | Path, output_dir: str | Path | None = None) -> str:
    """
    Classify an intermediate participants CSV and write the processed report.

    Args:
        csv_path: Intermediate CSV written by the report fetcher
        output_dir: Directory for processed_<basename>; defaults to PROCESSED_CSV_DIR

    Returns:
        str: Path of the processed CSV

    Raises:
        ClassificationError: The CSV could not be read or the report written
    """
    output_dir = Path(output_dir or settings.PROCESSED_CSV_DIR)
    processed_path = output_dir / processed_filename(csv_path)

    try:
        rows = read_csv_rows(csv_path)
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise ClassificationError(f"Could not read participants CSV {csv_path}: {e}") from e

    records = [ParticipantRecord.from_row(row) for row in rows]
    classified = classify_records(records)

    try:
        write_text_atomic(processed_path, render_csv(PROCESSED_FIELDS, [c.to_row() for c in classified]))
    except OSError as e:
        raise ClassificationError(f"Could not write processed report {processed_path}: {e}") from e

    counts = {status.value: 0 for status in AttendanceStatus}
    for item in classified:
        counts[item.status.value] += 1

    logger.info("Processed file saved", path=str(processed_path), rows=len(classified), **counts)
    return str(processed_path)
