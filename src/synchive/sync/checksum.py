"""CRC-32 checksum engine.

Checksums are 32-bit CRCs (``zlib.crc32``) rendered as exactly eight
lowercase hex digits.  CRC-32 is fast but not collision resistant; two
different contents with the same checksum are treated as identical.
"""

from __future__ import annotations

import re
import zlib
from pathlib import Path
from typing import Callable

from synchive.errors import IntegrityError

CHECKSUM_LENGTH = 8
DEFAULT_CHUNK_SIZE = 65536  # 64 KB chunks

_CHECKSUM_RE = re.compile(r"[0-9a-fA-F]{8}")


def format_checksum(value: int) -> str:
    """Render a CRC value as eight zero-padded lowercase hex digits."""
    return f"{value & 0xFFFFFFFF:0{CHECKSUM_LENGTH}x}"


def is_checksum(text: str) -> bool:
    """Return ``True`` if *text* is exactly eight hex digits."""
    return bool(_CHECKSUM_RE.fullmatch(text))


class RunningChecksum:
    """Incremental checksum for data that is being streamed elsewhere."""

    def __init__(self) -> None:
        self._crc = 0

    def update(self, chunk: bytes) -> None:
        self._crc = zlib.crc32(chunk, self._crc)

    def hexdigest(self) -> str:
        return format_checksum(self._crc)


def compute_checksum(
    path: str | Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_read: Callable[[int], None] | None = None,
) -> str:
    """Stream *path* and return its checksum.

    Memory use is bounded by *chunk_size*.

    Args:
        path: File to read.
        chunk_size: Bytes per read.
        on_read: Called with the size of every chunk read (progress hook).

    Raises:
        IntegrityError: If the file cannot be opened or a read fails.
    """
    running = RunningChecksum()
    try:
        with open(path, "rb") as f:
            while chunk := f.read(chunk_size):
                running.update(chunk)
                if on_read is not None:
                    on_read(len(chunk))
    except OSError as exc:
        raise IntegrityError(
            str(path), f"unable to read: {exc.strerror or exc}"
        ) from exc
    return running.hexdigest()
