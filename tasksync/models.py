"""Change facts and the payloads sent to clients."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


@dataclass(frozen=True, slots=True)
class ChangeFact:
    """One real modification of a watched file.

    Attributes:
        path: Normalized path of the file
        content: File content read once for this change
        modified_ns: ``st_mtime_ns`` observed for this change
        observed_at: Wall-clock time the change was detected
    """

    path: str
    content: str
    modified_ns: int
    observed_at: float = field(default_factory=time.time)

    def to_notification(self, cwd: str | os.PathLike[str] | None = None) -> FileChangedNotification:
        return FileChangedNotification(
            path=_display_path(self.path, cwd),
            content=self.content,
            timestamp=datetime.fromtimestamp(self.observed_at, tz=timezone.utc),
        )


def _display_path(path: str, cwd: str | os.PathLike[str] | None) -> str:
    base = os.fspath(cwd) if cwd is not None else os.getcwd()
    try:
        relative = os.path.relpath(path, base)
    except ValueError:
        return path
    if relative == os.curdir or relative.startswith(os.pardir):
        return path
    return relative


class FileChangedNotification(BaseModel):
    """Payload of the ``notifications/message`` sent on every change."""

    type: Literal["file_changed"] = "file_changed"
    path: str
    content: str
    timestamp: datetime


class HealthStatus(BaseModel):
    """Body of the SSE transport's ``/health`` route."""

    status: Literal["ok"] = "ok"
    server: str
    version: str
    connections: int = Field(ge=0)
    allowed_directories: int = Field(ge=0)
