"""
Processed report watcher.

Polls the processed-report directory and invokes a callback for every new
(or rewritten) report file. Runs for the lifetime of the application.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FileCallback = Callable[[Path], Awaitable[object]]


class ReportWatcher:
    def __init__(
        self,
        directory: str | Path,
        on_new_file: FileCallback,
        poll_interval: float | None = None,
    ):
        self.directory = Path(directory)
        self.on_new_file = on_new_file
        self.poll_interval = poll_interval or settings.WATCHER_POLL_INTERVAL_SECONDS
        self._seen: dict[str, int] = {}
        self._task: asyncio.Task | None = None
        self.files_reported = 0
        self.last_poll_at: datetime | None = None
        self.callback_errors = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _scan(self) -> dict[str, int]:
        snapshot = {}
        if not self.directory.is_dir():
            return snapshot
        for entry in self.directory.iterdir():
            # dotfiles include in-progress temp writes
            if entry.name.startswith(".") or not entry.is_file():
                continue
            try:
                snapshot[entry.name] = entry.stat().st_mtime_ns
            except FileNotFoundError:
                continue
        return snapshot

    async def start(self) -> None:
        if self.running:
            return
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        # files already present at start-up are not reported
        self._seen = await asyncio.to_thread(self._scan)
        self._task = asyncio.create_task(self._run(), name="report-watcher")
        logger.info(
            "Report watcher started",
            directory=str(self.directory),
            poll_interval=self.poll_interval,
            existing_files=len(self._seen),
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Report watcher stopped", files_reported=self.files_reported)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(
                    "Error in report watcher", error=str(e), error_type=type(e).__name__
                )

    async def poll_once(self) -> list[Path]:
        """Scan once and dispatch new files; returns the files reported."""
        current = await asyncio.to_thread(self._scan)
        self.last_poll_at = datetime.now()
        arrived = [
            self.directory / name
            for name, mtime in sorted(current.items())
            if self._seen.get(name) != mtime
        ]
        self._seen = current

        for path in arrived:
            self.files_reported += 1
            try:
                await self.on_new_file(path)
            except Exception as e:
                self.callback_errors += 1
                logger.error(
                    "Report watcher callback failed",
                    path=str(path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return arrived

    def status(self) -> dict:
        return {
            "running": self.running,
            "directory": str(self.directory),
            "files_reported": self.files_reported,
            "callback_errors": self.callback_errors,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
        }
