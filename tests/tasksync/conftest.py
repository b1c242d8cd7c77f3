"""Pytest fixtures for tasksync tests."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from tasksync.coordinator import WatchCoordinator
from tasksync.paths import normalize_path
from tasksync.service import FeedbackService
from tasksync.settings import WaitSettings


class FakeWatch:
    def __init__(self, path: str, emit) -> None:
        self.path = path
        self.emit = emit
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeWatchFactory:
    """Record installed watches instead of touching the OS."""

    def __init__(self) -> None:
        self.watches: list[FakeWatch] = []

    def __call__(self, path: str, emit) -> FakeWatch:
        watch = FakeWatch(path, emit)
        self.watches.append(watch)
        return watch

    @property
    def paths(self) -> list[str]:
        return [watch.path for watch in self.watches]


def _write_later(path: Path, text: str, *, seconds: int = 1) -> int:
    """Write ``text`` and push the mtime strictly past its previous value."""
    previous = path.stat().st_mtime_ns if path.exists() else time.time_ns()
    path.write_text(text, encoding="utf-8")
    bumped = max(previous, path.stat().st_mtime_ns) + seconds * 1_000_000_000
    os.utime(path, ns=(bumped, bumped))
    return bumped


@pytest.fixture
def write_later():
    return _write_later


@pytest.fixture
def watch_factory() -> FakeWatchFactory:
    return FakeWatchFactory()


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Allowed directory, symlink-resolved so paths compare as the guard sees them."""
    work = tmp_path / "work"
    work.mkdir()
    return Path(os.path.realpath(work))


@pytest.fixture
def feedback_file(workdir: Path) -> Path:
    path = workdir / "feedback.md"
    path.write_text("initial", encoding="utf-8")
    return path


@pytest.fixture
def coordinator(watch_factory: FakeWatchFactory) -> WatchCoordinator:
    return WatchCoordinator(watch_factory=watch_factory, wait_settings=WaitSettings(timeout=5))


@pytest.fixture
async def service(workdir: Path, watch_factory: FakeWatchFactory):
    svc = FeedbackService(
        [normalize_path(str(workdir))],
        cwd=workdir,
        wait_settings=WaitSettings(timeout=5),
        watch_factory=watch_factory,
    )
    await svc.start()
    yield svc
    await svc.close()
