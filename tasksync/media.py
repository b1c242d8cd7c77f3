"""MIME detection and base64 encoding for the ``view_media`` tool."""

from __future__ import annotations

import base64
import os

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

_CHUNK_SIZE = 64 * 1024


def guess_media_type(path: str) -> str:
    return MIME_TYPES.get(os.path.splitext(path)[1].lower(), DEFAULT_MIME_TYPE)


def read_media(path: str) -> tuple[str, str]:
    """Read ``path`` and return ``(base64 data, mime type)``."""
    chunks: list[bytes] = []
    with open(path, "rb") as handle:
        while chunk := handle.read(_CHUNK_SIZE):
            chunks.append(chunk)
    return base64.b64encode(b"".join(chunks)).decode("ascii"), guess_media_type(path)
