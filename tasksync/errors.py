"""Typed failures raised by the tasksync core."""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for every failure tasksync raises on purpose."""


class AccessDeniedError(TaskSyncError):
    """A path, its symlink target, or its parent lies outside the allowlist."""

    def __init__(self, message: str, *, requested: str | None = None, resolved: str | None = None):
        super().__init__(message)
        self.requested = requested
        self.resolved = resolved


class ParentNotFoundError(TaskSyncError):
    """The parent directory of a file that does not exist yet is missing too."""


class InvalidArgumentError(TaskSyncError, ValueError):
    """Caller supplied arguments that can never be satisfied."""


class WaitTimeoutError(TaskSyncError, TimeoutError):
    """No change to a watched file was observed before the deadline."""
