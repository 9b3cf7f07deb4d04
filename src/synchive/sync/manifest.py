"""Manifest persistence.

The manifest lives at the destination root under a fixed reserved name and
lists every file the last completed run left at the destination, one per
line as ``<relative path>\\t<8 hex digit checksum>``.

Key design choices:

* **Rewritten, never appended** -- ``save()`` writes the full mapping to a
  temp file in the destination root and calls ``os.replace()`` so a reader
  sees either the previous manifest or the new one.
* **Hint only** -- ``load()`` of a missing file returns an empty manifest.
  The engine reads the prior manifest to annotate drift, never to decide
  an action.
* **Byte-exact names** -- paths are written as UTF-8 with
  ``surrogateescape``, so names that are not valid UTF-8 survive a
  save and load unchanged.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator, Mapping
from pathlib import Path

from .checksum import is_checksum
from .scanner import (
    MANIFEST_FILE_NAME,
    MANIFEST_TEMP_PREFIX,
    MANIFEST_TEMP_SUFFIX,
)

logger = logging.getLogger(__name__)


class Manifest:
    """Ordered mapping of destination relative path to checksum.

    Args:
        entries: Initial ``path -> checksum`` pairs.
    """

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = {}
        for path, crc in (entries or {}).items():
            self.set(path, crc)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self._entries == other._entries

    def get(self, path: str) -> str | None:
        """Return the checksum recorded for *path*, or ``None``."""
        return self._entries.get(path)

    def set(self, path: str, checksum: str) -> None:
        if not is_checksum(checksum):
            raise ValueError(f"Not a checksum: {checksum!r}")
        self._entries[path] = checksum.lower()

    def remove(self, path: str) -> None:
        """Drop *path*.  No-op if not present."""
        self._entries.pop(path, None)

    def items(self) -> list[tuple[str, str]]:
        """Entries sorted by path."""
        return sorted(self._entries.items())

    def to_dict(self) -> dict[str, str]:
        return dict(self.items())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def path_for(destination_root: str | Path) -> Path:
        return Path(destination_root) / MANIFEST_FILE_NAME

    @classmethod
    def load(cls, destination_root: str | Path) -> Manifest:
        """Read the manifest at *destination_root*.

        A missing manifest is "no prior knowledge" and yields an empty
        mapping.  Malformed lines are logged and skipped.
        """
        path = cls.path_for(destination_root)
        manifest = cls()
        if not path.exists():
            return manifest

        with open(path, encoding="utf-8", errors="surrogateescape") as fh:
            for lineno, line in enumerate(fh, 1):
                line = line.rstrip("\r\n")
                if not line:
                    continue
                rel, sep, crc = line.rpartition("\t")
                if not sep or not rel or not is_checksum(crc):
                    logger.warning(
                        "Ignoring malformed manifest line %d in %s",
                        lineno,
                        path,
                    )
                    continue
                manifest.set(rel, crc)
        logger.debug("Loaded %d manifest entries from %s", len(manifest), path)
        return manifest

    def save(self, destination_root: str | Path) -> Path:
        """Persist the manifest atomically and return its path."""
        root = Path(destination_root)
        root.mkdir(parents=True, exist_ok=True)
        target = self.path_for(root)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(root),
            prefix=MANIFEST_TEMP_PREFIX,
            suffix=MANIFEST_TEMP_SUFFIX,
        )
        try:
            with os.fdopen(
                fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n"
            ) as fh:
                for rel, crc in self.items():
                    fh.write(f"{rel}\t{crc}\n")
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug("Wrote %d manifest entries to %s", len(self), target)
        return target
