"""Path normalization shared by the allowlist and the path guard.

Every path that is compared against the allowlist goes through
:func:`normalize_path` first, so two spellings of the same location end up
byte-identical. POSIX paths are only collapsed; Windows-shaped paths (drive
letters, UNC shares, and under Windows semantics the WSL ``/mnt/c`` and
Git-Bash ``/c`` forms) are rewritten to backslash form with an upper-case
drive letter.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re

_WSL_MOUNT = re.compile(r"^/mnt/([a-zA-Z])/")
_LETTER_ROOT = re.compile(r"^/([a-zA-Z])/")
_DRIVE = re.compile(r"^[a-zA-Z]:")
_REPEATED_SLASHES = re.compile(r"/+")
_QUOTES = ("\"", "'")


def _strip_quotes(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        value = value[1:-1]
    return value


def _is_wsl_form(p: str) -> bool:
    return bool(_WSL_MOUNT.match(p) or _LETTER_ROOT.match(p))


def _is_windows_shaped(p: str) -> bool:
    return bool(_DRIVE.match(p)) or p.startswith("\\\\") or "\\" in p


def _collapse_posix(p: str) -> str:
    collapsed = _REPEATED_SLASHES.sub("/", p)
    if collapsed != "/":
        collapsed = collapsed.rstrip("/")
    return collapsed


def convert_to_windows_path(p: str) -> str:
    """Rewrite ``/mnt/c/...`` and ``/c/...`` to ``C:\\...``.

    Drive-letter paths only get their separators flipped; anything else is
    returned untouched.
    """
    match = _WSL_MOUNT.match(p) or _LETTER_ROOT.match(p)
    if match:
        rest = p[match.end() - 1 :].replace("/", "\\")
        return f"{match.group(1).upper()}:{rest}"
    if _DRIVE.match(p):
        return p.replace("/", "\\")
    return p


def normalize_path(raw: str, *, windows: bool | None = None) -> str:
    """Return the canonical spelling of ``raw`` used for containment checks.

    Args:
        raw: Path as supplied by a user, a client, or the filesystem.
        windows: Apply Windows semantics to POSIX-looking WSL paths.
            Defaults to ``os.name == "nt"``.

    Returns:
        Normalized path. ``normalize_path(normalize_path(p)) == normalize_path(p)``.
    """
    if windows is None:
        windows = os.name == "nt"

    # Removing one quote pair or one trailing separator can expose another
    # (nested quotes, "/a /"), so repeat until the spelling is stable.
    normalized = _normalize_once(raw, windows)
    while (again := _normalize_once(normalized, windows)) != normalized:
        normalized = again
    return normalized


def _normalize_once(raw: str, windows: bool) -> str:
    p = _strip_quotes(raw)

    if p.startswith("/") and not (windows and _is_wsl_form(p)):
        return _collapse_posix(p)

    if not windows and not _is_windows_shaped(p):
        return posixpath.normpath(p)

    p = convert_to_windows_path(p).replace("/", "\\")
    is_unc = p.startswith("\\\\")

    normalized = ntpath.normpath(p)
    if is_unc and not normalized.startswith("\\\\"):
        normalized = "\\" + normalized

    if _DRIVE.match(normalized):
        return normalized[0].upper() + normalized[1:]
    return normalized


def expand_home(p: str) -> str:
    """Replace a leading ``~`` with the current user's home directory."""
    if p == "~":
        return os.path.expanduser("~")
    if p.startswith("~/") or p.startswith("~\\"):
        return os.path.join(os.path.expanduser("~"), p[2:])
    return p


def to_absolute(p: str, cwd: str | os.PathLike[str] | None = None) -> str:
    """Expand ``~`` and resolve a relative path against ``cwd``."""
    expanded = expand_home(p)
    if os.path.isabs(expanded):
        return os.path.abspath(expanded)
    base = os.fspath(cwd) if cwd is not None else os.getcwd()
    return os.path.abspath(os.path.join(base, expanded))
