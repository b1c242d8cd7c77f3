"""Change detection and wait coordination for watched files.

Raw watch events are queued on a single channel and consumed by one
coordinator loop. For each event :meth:`WatchCoordinator.handle_change`
re-stats the file and, if the modification time really moved, records it,
reads the content once, drains every waiter for that path and hands the same
:class:`ChangeFact` to the broadcaster. Recording the timestamp and draining
the queue happen without an intervening suspension point, so a caller can
never be registered between the two.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import os
from dataclasses import dataclass
from pathlib import Path

from tasksync.broadcast import Broadcaster
from tasksync.errors import InvalidArgumentError, TaskSyncError
from tasksync.logging import get_logger
from tasksync.models import ChangeFact
from tasksync.queue import WaiterQueue
from tasksync.settings import WaitSettings, WatchSettings
from tasksync.watcher import Watch, WatchFactory, default_watch_factory

log = get_logger("coordinator")


def select_lines(content: str, head: int | None = None, tail: int | None = None) -> str:
    """Return the first ``head`` or last ``tail`` lines of ``content``."""
    if head is not None and tail is not None:
        raise InvalidArgumentError("Cannot specify both head and tail parameters simultaneously")
    if tail:
        return "\n".join(content.split("\n")[-tail:])
    if head:
        return "\n".join(content.split("\n")[:head])
    return content


def read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


@dataclass
class WatchedFileState:
    """Bookkeeping for one watched path.

    Attributes:
        path: Normalized path of the file
        last_modified_ns: Last mtime seen by the watch, used to drop spurious events
        last_delivered_ns: Last mtime whose content was handed to a caller
        watch: Installed OS watch, ``None`` until the file exists
    """

    path: str
    last_modified_ns: int | None = None
    last_delivered_ns: int | None = None
    watch: Watch | None = None

    @property
    def watching(self) -> bool:
        return self.watch is not None

    def mark_delivered(self, modified_ns: int) -> None:
        if self.last_delivered_ns is None or modified_ns > self.last_delivered_ns:
            self.last_delivered_ns = modified_ns


class WatchCoordinator:
    """Own the watched-file states, their waiters and the event loop feeding them."""

    def __init__(
        self,
        broadcaster: Broadcaster | None = None,
        *,
        waiters: WaiterQueue | None = None,
        watch_factory: WatchFactory | None = None,
        wait_settings: WaitSettings | None = None,
        watch_settings: WatchSettings | None = None,
    ):
        self.broadcaster = broadcaster or Broadcaster()
        self.waiters = waiters or WaiterQueue()
        self.settings = wait_settings or WaitSettings()
        self._watch_factory = watch_factory or default_watch_factory(watch_settings)
        self._states: dict[str, WatchedFileState] = {}
        self._events: asyncio.Queue[str] = asyncio.Queue()
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def watched_paths(self) -> list[str]:
        return [path for path, state in self._states.items() if state.watching]

    def state(self, path: str) -> WatchedFileState | None:
        return self._states.get(path)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start consuming watch events in a background task."""
        if not self.running:
            self._loop_task = asyncio.create_task(self.run(), name="tasksync-coordinator")

    async def run(self) -> None:
        """Consume queued watch events one at a time, forever."""
        while True:
            path = await self._events.get()
            try:
                await self.handle_change(path)
            except (OSError, ValueError):
                log.exception("Error handling change for %s", path)
            finally:
                self._events.task_done()

    def notify(self, path: str) -> None:
        """Queue a raw filesystem event for ``path``; safe to call from watch tasks."""
        self._events.put_nowait(path)

    async def ensure_watch(
        self,
        path: str,
        *,
        create_if_missing: bool = False,
        initial_content: str = "",
    ) -> WatchedFileState | None:
        """Install a watch on ``path`` unless one is already active.

        A missing file is created with ``initial_content`` when
        ``create_if_missing`` is set; otherwise no watch is installed and
        ``None`` is returned.
        """
        state = self._states.get(path)
        if state is not None and state.watching:
            return state

        if not os.path.exists(path):
            if not create_if_missing:
                log.debug("File does not exist, skipping watcher: %s", path)
                return None
            log.info("Creating file: %s", path)
            with contextlib.suppress(FileExistsError), open(path, "x", encoding="utf-8") as handle:
                handle.write(initial_content)

        modified_ns = os.stat(path).st_mtime_ns
        state = state or WatchedFileState(path=path)
        state.last_modified_ns = modified_ns
        state.watch = self._watch_factory(path, self.notify)
        self._states[path] = state
        log.info("File watcher set up for %s (mtime %d)", path, modified_ns)
        return state

    async def check_or_wait(self, path: str, *, timeout: float | None = None) -> str:
        """Return the content of ``path`` once it is newer than what callers last saw.

        The first call for a path returns immediately. Later calls return
        immediately if the file changed since the last delivery, and otherwise
        wait for the next real change or fail after ``timeout`` seconds.

        Raises:
            FileNotFoundError: ``path`` does not exist and is not watched.
            WaitTimeoutError: No change arrived before the deadline.
        """
        state = self._states.get(path)
        if state is None or not state.watching:
            state = await self.ensure_watch(path)
            if state is None:
                raise FileNotFoundError(errno.ENOENT, "File does not exist", path)

        current_ns = os.stat(path).st_mtime_ns
        log.debug("check %s: current %d, last delivered %s", path, current_ns, state.last_delivered_ns)

        if state.last_delivered_ns is None or current_ns > state.last_delivered_ns:
            content = read_text(path)
            state.mark_delivered(current_ns)
            if state.last_modified_ns is None or current_ns > state.last_modified_ns:
                state.last_modified_ns = current_ns
            log.info("File %s has changed, returning content immediately", path)
            return content

        wait_for = self.settings.timeout if timeout is None else timeout
        waiter = self.waiters.register(path, wait_for)
        log.info("File %s unchanged, waiting up to %gs (%d waiting)", path, wait_for, self.waiters.size(path))
        try:
            return await waiter.future
        finally:
            self.waiters.remove(waiter)

    async def handle_change(self, path: str) -> ChangeFact | None:
        """Turn a raw watch event into a change fact, or ignore it.

        Returns:
            The published :class:`ChangeFact`, or ``None`` for unwatched
            paths, vanished files and spurious events.
        """
        state = self._states.get(path)
        if state is None:
            log.debug("Ignoring event for unwatched path %s", path)
            return None

        try:
            modified_ns = os.stat(path).st_mtime_ns
        except FileNotFoundError:
            log.debug("Ignoring event for missing file %s", path)
            return None

        if modified_ns == state.last_modified_ns:
            log.debug("Ignoring spurious event for %s", path)
            return None

        log.info("File change detected for %s: %s -> %d", path, state.last_modified_ns, modified_ns)
        state.last_modified_ns = modified_ns
        content = read_text(path)
        fact = ChangeFact(path=path, content=content, modified_ns=modified_ns)

        resolved = 0
        if state.last_delivered_ns is not None and modified_ns <= state.last_delivered_ns:
            log.info("Mtime of %s moved back to %d; waiting calls stay queued", path, modified_ns)
        else:
            resolved = sum(1 for waiter in self.waiters.drain(path) if waiter.resolve(content))
            if resolved:
                state.mark_delivered(modified_ns)

        notified = await self.broadcaster.publish(fact)
        log.info("Change of %s resolved %d waiting calls and notified %d subscribers", path, resolved, notified)
        return fact

    async def unwatch(self, path: str) -> None:
        """Tear down the watch for ``path`` and forget its state."""
        state = self._states.pop(path, None)
        if state is not None and state.watch is not None:
            await state.watch.close()
            log.info("Closed watcher for %s", path)

    async def close(self) -> None:
        """Stop the loop, release every watch and fail every pending waiter."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        for path in list(self._states):
            await self.unwatch(path)

        for waiter in self.waiters.drain_all():
            waiter.fail(TaskSyncError("Watch coordinator closed"))
