"""The set of directories every file operation must stay inside."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from tasksync.errors import InvalidArgumentError
from tasksync.logging import get_logger
from tasksync.paths import normalize_path, to_absolute

log = get_logger("allowlist")


class DirectoryAllowlist:
    """Ordered, de-duplicated set of normalized absolute directories.

    The contents are held in a tuple that :meth:`replace` swaps in one
    assignment, so readers always see either the old or the new set.
    """

    def __init__(self, directories: Iterable[str] = ()):
        self._directories: tuple[str, ...] = self._coerce(directories)

    @property
    def directories(self) -> tuple[str, ...]:
        return self._directories

    def replace(self, directories: Iterable[str]) -> None:
        """Atomically replace the whole allowlist."""
        updated = self._coerce(directories)
        self._directories = updated
        log.info("Allowed directories updated: %s", ", ".join(updated) or "<none>")

    def __iter__(self) -> Iterator[str]:
        return iter(self._directories)

    def __len__(self) -> int:
        return len(self._directories)

    def __contains__(self, directory: object) -> bool:
        return isinstance(directory, str) and normalize_path(directory) in self._directories

    def __repr__(self) -> str:
        return f"DirectoryAllowlist({list(self._directories)!r})"

    @staticmethod
    def _coerce(directories: Iterable[str]) -> tuple[str, ...]:
        if isinstance(directories, str):
            raise InvalidArgumentError("directories must be an iterable of paths, not a single string")

        seen: dict[str, None] = {}
        for directory in directories:
            if not isinstance(directory, str) or not directory.strip() or "\x00" in directory:
                raise InvalidArgumentError(f"Invalid allowed directory: {directory!r}")
            normalized = normalize_path(directory)
            if not os.path.isabs(normalized):
                raise InvalidArgumentError(f"Allowed directory must be absolute: {directory}")
            seen.setdefault(normalized, None)
        return tuple(seen)


def _resolve_directory(raw: str, cwd: str | os.PathLike[str] | None = None) -> str:
    absolute = to_absolute(raw, cwd)
    try:
        return normalize_path(os.path.realpath(absolute, strict=True))
    except OSError:
        return normalize_path(absolute)


def resolve_allowed_directories(
    raw_directories: Iterable[str],
    cwd: str | os.PathLike[str] | None = None,
) -> list[str]:
    """Turn user-facing directory arguments into allowlist entries.

    Each entry is ``~``-expanded, made absolute and symlink-resolved. With no
    entries the working directory is used.

    Raises:
        InvalidArgumentError: An entry does not exist or is not a directory.
    """
    raw = list(raw_directories)
    if not raw:
        return [_resolve_directory(os.fspath(cwd) if cwd is not None else os.getcwd())]

    resolved: list[str] = []
    for directory in raw:
        path = _resolve_directory(directory, cwd)
        if not os.path.exists(path):
            raise InvalidArgumentError(f"Error accessing directory {path}: no such directory")
        if not os.path.isdir(path):
            raise InvalidArgumentError(f"Error accessing directory {path}: not a directory")
        resolved.append(path)
    return resolved


def _uri_to_path(uri: str) -> str | None:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return None
    path = url2pathname(parsed.path) if os.name == "nt" else unquote(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    return path


def roots_to_directories(uris: Iterable[str]) -> list[str]:
    """Keep the client root URIs that name existing local directories."""
    directories: list[str] = []
    for uri in uris:
        path = _uri_to_path(str(uri))
        if path is None:
            log.warning("Skipping root with unsupported scheme: %s", uri)
            continue

        resolved = _resolve_directory(path)
        if not os.path.isdir(resolved):
            log.warning("Skipping root that is not an accessible directory: %s", uri)
            continue
        if resolved not in directories:
            directories.append(resolved)
    return directories
