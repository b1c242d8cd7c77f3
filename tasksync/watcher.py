"""OS-level watch for a single file, feeding raw events to the coordinator."""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import Callable
from typing import Protocol

from watchfiles import Change, awatch

from tasksync.logging import get_logger
from tasksync.settings import WatchSettings

log = get_logger("watcher")

EmitChange = Callable[[str], None]


class Watch(Protocol):
    """Handle on an installed watch."""

    async def close(self) -> None: ...


WatchFactory = Callable[[str, EmitChange], Watch]


class FileWatch:
    """Watch one file through its parent directory and emit its path on change.

    Watching the directory rather than the file keeps the watch alive across
    editors that save by writing a temporary file and renaming it over the
    original.
    """

    def __init__(self, path: str, emit: EmitChange, settings: WatchSettings | None = None):
        self.path = path
        self.emit = emit
        self.settings = settings or WatchSettings()
        self.directory = os.path.dirname(path) or os.curdir
        self.name = os.path.basename(path)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> FileWatch:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.watch(), name=f"tasksync-watch:{self.path}")
        return self

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def watch(self) -> None:
        """Run the watch until :meth:`close`, emitting every matching change."""
        try:
            async for changes in awatch(
                self.directory,
                watch_filter=self.should_watch,
                debounce=self.settings.debounce_ms,
                step=self.settings.step_ms,
                stop_event=self._stop_event,
                recursive=False,
                force_polling=self.settings.force_polling,
                poll_delay_ms=self.settings.poll_delay_ms,
            ):
                for change_type, path_str in changes:
                    self.handle_change(change_type, path_str)
        except (OSError, RuntimeError):
            log.exception("Watch for %s stopped", self.path)

    def should_watch(self, change: Change, path: str) -> bool:
        """Only additions and modifications of the watched file count."""
        return change != Change.deleted and os.path.basename(path) == self.name

    def handle_change(self, change_type: Change, path_str: str) -> None:
        log.debug("File watcher event: %s for %s", change_type.name, path_str)
        self.emit(self.path)

    async def close(self) -> None:
        self._stop_event.set()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


def default_watch_factory(settings: WatchSettings | None = None) -> WatchFactory:
    """Build a factory installing a started :class:`FileWatch` per path."""

    def factory(path: str, emit: EmitChange) -> Watch:
        return FileWatch(path, emit, settings).start()

    return factory
