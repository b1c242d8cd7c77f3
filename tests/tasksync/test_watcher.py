"""Tests for the watchfiles-backed file watch."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from watchfiles import Change

from tasksync.settings import WatchSettings
from tasksync.watcher import FileWatch, default_watch_factory


def test_should_watch_only_the_target_file(tmp_path: Path) -> None:
    watch = FileWatch(str(tmp_path / "feedback.md"), lambda path: None)

    assert watch.should_watch(Change.modified, str(tmp_path / "feedback.md"))
    assert watch.should_watch(Change.added, str(tmp_path / "feedback.md"))
    assert not watch.should_watch(Change.deleted, str(tmp_path / "feedback.md"))
    assert not watch.should_watch(Change.modified, str(tmp_path / "feedback.md.swp"))
    assert not watch.should_watch(Change.modified, str(tmp_path / "notes.md"))


def test_handle_change_emits_watched_path(tmp_path: Path) -> None:
    emitted: list[str] = []
    target = str(tmp_path / "feedback.md")
    watch = FileWatch(target, emitted.append)

    watch.handle_change(Change.added, str(tmp_path / "feedback.md"))

    assert emitted == [target]


@pytest.mark.asyncio
async def test_close_without_start_is_noop(tmp_path: Path) -> None:
    watch = FileWatch(str(tmp_path / "feedback.md"), lambda path: None)

    await watch.close()

    assert not watch.running


@pytest.mark.asyncio
async def test_polling_watch_reports_edits(tmp_path: Path, write_later) -> None:
    target = tmp_path / "feedback.md"
    target.write_text("", encoding="utf-8")
    seen = asyncio.Event()
    settings = WatchSettings(force_polling=True, poll_delay_ms=20, debounce_ms=20, step_ms=10)

    def emit(path: str) -> None:
        assert path == str(target)
        seen.set()

    async def keep_editing() -> None:
        # The poller only reports edits made after its first snapshot.
        revision = 0
        while not seen.is_set():
            revision += 1
            write_later(target, f"edit {revision}")
            await asyncio.sleep(0.1)

    watch = default_watch_factory(settings)(str(target), emit)
    try:
        assert watch.running
        await asyncio.wait_for(keep_editing(), timeout=10)
    finally:
        await watch.close()

    assert not watch.running
