"""
Report file helpers - timestamps, rounding and atomic file writes shared by
the report fetcher and the attendance classifier.
"""

import csv
import io
import math
import os
from datetime import datetime
from pathlib import Path


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (2.5 -> 3), unlike round()."""
    return math.floor(value + 0.5)


def parse_iso_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp such as 2024-01-01T10:00:00Z, or None."""
    if not value or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def render_csv(fieldnames: list[str], rows: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def read_csv_rows(path: str | Path) -> list[dict[str, str]]:
    """Read CSV rows with header names lower-cased and trimmed."""
    with open(path, newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        header = next(reader, None)
        if header is None:
            return []
        keys = [name.strip().lower() for name in header]
        return [dict(zip(keys, values, strict=False)) for values in reader if values]


def write_text_atomic(path: str | Path, content: str) -> str:
    """
    Write a file via a hidden temp file and rename.

    Readers (including the processed report watcher, which skips dotfiles)
    never observe a partially written report.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp = target.with_name(f".{target.name}.tmp")
    temp.write_text(content, encoding="utf-8")
    os.replace(temp, target)
    return str(target)
