import asyncio
import os

import pytest

from app.jobs.report_watcher import ReportWatcher


class Collector:
    def __init__(self, fail_on: str | None = None):
        self.paths = []
        self.fail_on = fail_on

    async def __call__(self, path):
        if self.fail_on and path.name == self.fail_on:
            raise RuntimeError("callback failed")
        self.paths.append(path.name)


@pytest.mark.asyncio
async def test_reports_only_files_created_after_start(tmp_path):
    (tmp_path / "existing.csv").write_text("old", encoding="utf-8")
    collector = Collector()
    watcher = ReportWatcher(tmp_path, collector, poll_interval=60)
    await watcher.start()
    try:
        (tmp_path / "processed_1_participants.csv").write_text("new", encoding="utf-8")
        (tmp_path / ".processed_2_participants.csv.tmp").write_text("partial", encoding="utf-8")

        arrived = await watcher.poll_once()

        assert [path.name for path in arrived] == ["processed_1_participants.csv"]
        assert collector.paths == ["processed_1_participants.csv"]
        assert await watcher.poll_once() == []
    finally:
        await watcher.stop()


@pytest.mark.asyncio
async def test_rewritten_file_is_reported_again(tmp_path):
    collector = Collector()
    watcher = ReportWatcher(tmp_path, collector, poll_interval=60)
    await watcher.start()
    try:
        report = tmp_path / "processed_1_participants.csv"
        report.write_text("v1", encoding="utf-8")
        await watcher.poll_once()

        stat = report.stat()
        os.utime(report, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        await watcher.poll_once()

        assert collector.paths == ["processed_1_participants.csv"] * 2
    finally:
        await watcher.stop()


@pytest.mark.asyncio
async def test_callback_errors_do_not_stop_watcher(tmp_path):
    collector = Collector(fail_on="a.csv")
    watcher = ReportWatcher(tmp_path, collector, poll_interval=60)
    await watcher.start()
    try:
        (tmp_path / "a.csv").write_text("a", encoding="utf-8")
        (tmp_path / "b.csv").write_text("b", encoding="utf-8")

        await watcher.poll_once()

        assert collector.paths == ["b.csv"]
        assert watcher.callback_errors == 1
        assert watcher.running is True
    finally:
        await watcher.stop()


@pytest.mark.asyncio
async def test_background_loop_dispatches_and_stops(tmp_path):
    collector = Collector()
    watcher = ReportWatcher(tmp_path / "created", collector, poll_interval=0.01)
    await watcher.start()

    (tmp_path / "created" / "report.csv").write_text("x", encoding="utf-8")
    for _ in range(100):
        if collector.paths:
            break
        await asyncio.sleep(0.01)

    await watcher.stop()

    assert collector.paths == ["report.csv"]
    assert watcher.running is False
    assert watcher.status()["files_reported"] == 1
