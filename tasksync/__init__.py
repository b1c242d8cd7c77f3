"""TaskSync: wait for a human-edited feedback file inside allowed directories."""

__version__ = "0.1.0"

from tasksync.allowlist import DirectoryAllowlist, resolve_allowed_directories, roots_to_directories
from tasksync.broadcast import Broadcaster, Subscription
from tasksync.coordinator import WatchCoordinator, WatchedFileState, select_lines
from tasksync.errors import (
    AccessDeniedError,
    InvalidArgumentError,
    ParentNotFoundError,
    TaskSyncError,
    WaitTimeoutError,
)
from tasksync.guard import PathGuard, is_within_allowed
from tasksync.models import ChangeFact, FileChangedNotification, HealthStatus
from tasksync.paths import expand_home, normalize_path
from tasksync.queue import Waiter, WaiterQueue
from tasksync.service import FeedbackService
from tasksync.settings import ServerSettings, WaitSettings, WatchSettings
from tasksync.watcher import FileWatch

__all__ = [
    "AccessDeniedError",
    "Broadcaster",
    "ChangeFact",
    "DirectoryAllowlist",
    "FeedbackService",
    "FileChangedNotification",
    "FileWatch",
    "HealthStatus",
    "InvalidArgumentError",
    "ParentNotFoundError",
    "PathGuard",
    "ServerSettings",
    "Subscription",
    "TaskSyncError",
    "WaitSettings",
    "WaitTimeoutError",
    "WatchCoordinator",
    "WatchSettings",
    "WatchedFileState",
    "Waiter",
    "WaiterQueue",
    "expand_home",
    "is_within_allowed",
    "normalize_path",
    "resolve_allowed_directories",
    "roots_to_directories",
    "select_lines",
]
