"""Containment checks that keep every file operation inside the allowlist."""

from __future__ import annotations

import errno
import os
import re
from collections.abc import Iterable
from types import ModuleType
from typing import TYPE_CHECKING

from tasksync.errors import AccessDeniedError, InvalidArgumentError, ParentNotFoundError
from tasksync.logging import get_logger
from tasksync.paths import normalize_path, to_absolute

if TYPE_CHECKING:
    from tasksync.allowlist import DirectoryAllowlist

log = get_logger("guard")

_DRIVE_ROOT = re.compile(r"^[A-Za-z]:\\?$")


def _usable(value: object) -> bool:
    return isinstance(value, str) and bool(value) and "\x00" not in value


def _contains(directory: str, candidate: str, pathmod: ModuleType) -> bool:
    sep = pathmod.sep
    if candidate == directory:
        return True
    if directory == sep:
        return candidate.startswith(sep)
    if sep == "\\" and _DRIVE_ROOT.match(directory):
        return candidate[:1].lower() == directory[:1].lower() and candidate[1:3] == ":\\"
    prefix = directory if directory.endswith(sep) else directory + sep
    return candidate.startswith(prefix)


def is_within_allowed(
    absolute_path: str,
    allowed_directories: Iterable[str],
    *,
    pathmod: ModuleType = os.path,
) -> bool:
    """Check whether ``absolute_path`` is at or beneath an allowed directory.

    Malformed input (empty, relative, embedded NUL) is never contained. The
    comparison is lexical: callers resolve symlinks before asking.

    Args:
        absolute_path: Candidate path.
        allowed_directories: Absolute directory paths.
        pathmod: ``os.path`` flavor deciding separators and absoluteness.

    Raises:
        ValueError: A candidate or allowlist entry stopped being absolute
            after normalization.
    """
    if not _usable(absolute_path):
        return False

    directories = [d for d in allowed_directories if _usable(d)]
    if not directories or not pathmod.isabs(absolute_path):
        return False

    candidate = pathmod.normpath(absolute_path)
    if not pathmod.isabs(candidate):
        raise ValueError("Path must be absolute after normalization")

    for directory in directories:
        normalized_dir = pathmod.normpath(directory)
        if not pathmod.isabs(normalized_dir):
            raise ValueError("Allowed directories must be absolute paths after normalization")
        if _contains(normalized_dir, candidate, pathmod):
            return True
    return False


class PathGuard:
    """Validate requested paths against a swappable :class:`DirectoryAllowlist`."""

    def __init__(self, allowlist: DirectoryAllowlist, *, cwd: str | os.PathLike[str] | None = None):
        self.allowlist = allowlist
        self.cwd = cwd

    def is_allowed(self, path: str) -> bool:
        return is_within_allowed(path, self.allowlist.directories)

    def validate(self, requested: str) -> str:
        """Prove ``requested`` is safe to touch and return its normalized form.

        Existing paths are judged by their symlink-resolved real path. Paths
        that do not exist yet are judged by the real path of their parent
        directory, so new files can be created inside allowed trees.

        Returns:
            The normalized requested path, not the resolved one.

        Raises:
            InvalidArgumentError: ``requested`` is empty or contains NUL.
            AccessDeniedError: The real path or real parent is outside the
                allowlist, or resolution hit a symlink cycle.
            ParentNotFoundError: Neither the path nor its parent exists.
        """
        if not isinstance(requested, str) or not requested.strip() or "\x00" in requested:
            raise InvalidArgumentError(f"Invalid path: {requested!r}")

        directories = self.allowlist.directories
        absolute = to_absolute(requested.strip(), self.cwd)
        normalized = normalize_path(absolute)

        try:
            real = normalize_path(os.path.realpath(absolute, strict=True))
        except FileNotFoundError:
            if os.path.lexists(absolute):
                # Dangling symlink: the eventual write lands on its target.
                target = normalize_path(os.path.realpath(absolute))
                self._require_contained(target, requested, directories, "Symlink target")
                self._validate_parent(target, requested, directories)
            else:
                self._validate_parent(absolute, requested, directories)
            return normalized
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                raise self._symlink_cycle(exc, requested) from exc
            raise

        self._require_contained(real, requested, directories, "Path")
        return normalized

    def _validate_parent(self, path: str, requested: str, directories: tuple[str, ...]) -> None:
        parent = os.path.dirname(path)
        try:
            real_parent = normalize_path(os.path.realpath(parent, strict=True))
        except FileNotFoundError as exc:
            raise ParentNotFoundError(f"Parent directory does not exist: {parent}") from exc
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                raise self._symlink_cycle(exc, requested) from exc
            raise

        self._require_contained(real_parent, requested, directories, "Parent directory")

    def _require_contained(
        self,
        real: str,
        requested: str,
        directories: tuple[str, ...],
        subject: str,
    ) -> None:
        if is_within_allowed(real, directories):
            return
        log.warning("Denied access to %s (resolved %s)", requested, real)
        raise AccessDeniedError(
            f"Access denied - {subject.lower()} outside allowed directories: "
            f"{requested} resolves to {real} not in {', '.join(directories) or '<none>'}",
            requested=requested,
            resolved=real,
        )

    @staticmethod
    def _symlink_cycle(exc: OSError, requested: str) -> AccessDeniedError:
        return AccessDeniedError(
            f"Access denied - cannot resolve symlinks for {requested}: {exc.strerror}",
            requested=requested,
        )
