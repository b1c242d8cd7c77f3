"""Core API consumed by the tool-dispatch layer."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from tasksync.allowlist import DirectoryAllowlist, roots_to_directories
from tasksync.broadcast import Broadcaster, ChangeCallback, Subscription
from tasksync.coordinator import WatchCoordinator, select_lines
from tasksync.errors import InvalidArgumentError
from tasksync.guard import PathGuard
from tasksync.logging import get_logger
from tasksync.settings import WaitSettings, WatchSettings
from tasksync.watcher import WatchFactory

log = get_logger("service")


def _check_line_arguments(head: int | None, tail: int | None) -> None:
    if head is not None and tail is not None:
        raise InvalidArgumentError("Cannot specify both head and tail parameters simultaneously")
    for name, value in (("head", head), ("tail", tail)):
        if value is not None and value < 1:
            raise InvalidArgumentError(f"{name} must be a positive number of lines")


class FeedbackService:
    """Allowlist, path guard, watch coordinator and broadcaster behind one API.

    Example:
        async with FeedbackService(["/tmp/work"]) as service:
            content = await service.await_change("/tmp/work/feedback.md", create_if_missing=True)
    """

    def __init__(
        self,
        allowed_directories: Iterable[str] = (),
        *,
        cwd: str | os.PathLike[str] | None = None,
        wait_settings: WaitSettings | None = None,
        watch_settings: WatchSettings | None = None,
        watch_factory: WatchFactory | None = None,
    ):
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.allowlist = DirectoryAllowlist(allowed_directories)
        self.guard = PathGuard(self.allowlist, cwd=self.cwd)
        self.broadcaster = Broadcaster()
        self.coordinator = WatchCoordinator(
            self.broadcaster,
            watch_factory=watch_factory,
            wait_settings=wait_settings,
            watch_settings=watch_settings,
        )

    async def __aenter__(self) -> FeedbackService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        self.coordinator.start()

    async def close(self) -> None:
        log.info("Shutting down feedback service")
        await self.coordinator.close()

    @property
    def allowed_directories(self) -> tuple[str, ...]:
        return self.allowlist.directories

    def set_allowed_directories(self, directories: Iterable[str]) -> None:
        """Replace the allowlist; waits already registered are unaffected."""
        self.allowlist.replace(directories)

    def update_from_roots(self, uris: Iterable[str]) -> list[str]:
        """Replace the allowlist with the valid directories among client roots.

        An empty valid set keeps the current allowlist.
        """
        directories = roots_to_directories(uris)
        if not directories:
            log.warning("No valid root directories provided by client")
            return []
        self.set_allowed_directories(directories)
        log.info("Updated allowed directories from client roots: %d valid directories", len(directories))
        return directories

    def validate_path(self, requested: str) -> str:
        return self.guard.validate(requested)

    def default_feedback_path(self, filename: str = "feedback.md") -> str:
        return str(self.cwd / filename)

    async def await_change(
        self,
        path: str,
        *,
        head: int | None = None,
        tail: int | None = None,
        timeout: float | None = None,
        create_if_missing: bool = False,
    ) -> str:
        """Validate ``path`` and return its content once it has changed.

        Args:
            path: Requested path, absolute or relative to the service cwd.
            head: Return only the first N lines.
            tail: Return only the last N lines.
            timeout: Seconds to wait; defaults to ``WaitSettings.timeout``.
            create_if_missing: Create the file empty when it does not exist.

        Raises:
            InvalidArgumentError: Both ``head`` and ``tail``, or a bad value.
            AccessDeniedError: ``path`` is outside the allowlist.
            WaitTimeoutError: Nothing changed before the deadline.
        """
        _check_line_arguments(head, tail)
        if timeout is not None and timeout <= 0:
            raise InvalidArgumentError("timeout must be positive")

        valid_path = self.validate_path(path)
        if create_if_missing:
            await self.coordinator.ensure_watch(valid_path, create_if_missing=True)

        content = await self.coordinator.check_or_wait(valid_path, timeout=timeout)
        return select_lines(content, head, tail)

    async def watch_default(self, filename: str = "feedback.md") -> str:
        """Create and watch the default feedback file ahead of the first call."""
        path = self.validate_path(self.default_feedback_path(filename))
        await self.coordinator.ensure_watch(path, create_if_missing=True)
        return path

    def subscribe(self, callback: ChangeCallback, *, name: str | None = None) -> Subscription:
        return self.broadcaster.subscribe(callback, name=name)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.broadcaster.unsubscribe(subscription)
