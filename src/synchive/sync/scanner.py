"""Directory scanner.

Enumerates the regular files under a root depth-first, in sorted name
order, producing ``FileRecord`` objects with POSIX-style relative paths.
The reserved run artifacts (manifest, audit trail and the leftover
directory) are skipped at the root so earlier runs never feed back in as
data, and so are partial copies and manifest temps left by a killed run.
Symbolic links are not followed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from .codec import get_extension, parse_embedded
from .models import FileRecord

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "~listOfFilesInCRC.txt"
AUDIT_FILE_NAME = "~auditTrail.txt"
LEFTOVER_DIR_NAME = "~leftovers"

RESERVED_NAMES = frozenset(
    {MANIFEST_FILE_NAME, AUDIT_FILE_NAME, LEFTOVER_DIR_NAME}
)

# Work files written next to their targets while a run is in progress
PARTIAL_SUFFIX = ".synchive-partial"
STAGING_SUFFIX = ".synchive-rename"
MANIFEST_TEMP_PREFIX = ".manifest-"
MANIFEST_TEMP_SUFFIX = ".tmp"


def is_work_file(name: str, at_root: bool) -> bool:
    """Return ``True`` for a partial copy or manifest temp from a killed run.

    Staged renames are not work files: they hold real data under a
    temporary name and are planned like any other destination file.
    """
    if not name.startswith("."):
        return False
    if name.endswith(PARTIAL_SUFFIX):
        return True
    return (
        at_root
        and name.startswith(MANIFEST_TEMP_PREFIX)
        and name.endswith(MANIFEST_TEMP_SUFFIX)
    )


class DirectoryScanner:
    """Lazy, restartable sequence of ``FileRecord`` for one root.

    Every iteration walks the tree again, so memory use does not grow with
    the size of the tree.

    Args:
        root: Directory to scan.
        delimiters: Delimiter pairs used to recognise embedded checksums.
        allow_bare: Also accept undelimited checksum tokens.
        on_error: Called with ``(relative_dir, exc)`` for directories that
            cannot be listed; they are skipped.
    """

    def __init__(
        self,
        root: str | Path,
        delimiters: Iterable[tuple[str, str]] = (),
        allow_bare: bool = False,
        on_error: Callable[[str, OSError], None] | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self._delimiters = list(delimiters)
        self._allow_bare = allow_bare
        self._on_error = on_error

    def __iter__(self) -> Iterator[FileRecord]:
        return self.scan()

    def scan(self) -> Iterator[FileRecord]:
        """Yield a record for every regular file under the root."""
        if not self.root.is_dir():
            return
        yield from self._walk(self.root, ())

    def _walk(
        self, directory: Path, parts: tuple[str, ...]
    ) -> Iterator[FileRecord]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            rel_dir = "/".join(parts) or "."
            logger.warning("Cannot list %s: %s", rel_dir, exc)
            if self._on_error is not None:
                self._on_error(rel_dir, exc)
            return

        for entry in entries:
            if not parts and entry.name in RESERVED_NAMES:
                continue
            if is_work_file(entry.name, at_root=not parts):
                logger.debug("Skipping leftover work file %s", entry.path)
                continue
            if entry.is_symlink():
                logger.debug("Skipping symlink %s", entry.path)
                continue
            if entry.is_dir(follow_symlinks=False):
                yield from self._walk(Path(entry.path), parts + (entry.name,))
            elif entry.is_file(follow_symlinks=False):
                yield self._make_record(entry, parts)

    def _make_record(
        self, entry: os.DirEntry, parts: tuple[str, ...]
    ) -> FileRecord:
        try:
            size = entry.stat(follow_symlinks=False).st_size
        except OSError:
            # Unreadable metadata surfaces later as an IntegrityError
            size = 0
        return FileRecord(
            relative_path="/".join(parts + (entry.name,)),
            absolute_path=Path(entry.path),
            size_bytes=size,
            extension=get_extension(entry.name).lower(),
            embedded_checksum=parse_embedded(
                entry.name, self._delimiters, self._allow_bare
            ),
        )


def scan(
    root: str | Path,
    delimiters: Iterable[tuple[str, str]] = (),
    allow_bare: bool = False,
) -> DirectoryScanner:
    """Shorthand for ``DirectoryScanner(root, delimiters, allow_bare)``."""
    return DirectoryScanner(root, delimiters, allow_bare)


def collect_extensions(root: str | Path) -> set[str]:
    """Return every lowercase extension found under *root*, recursively.

    Files without an extension contribute nothing.  Used to populate the
    extension filter choices; not part of a synchronisation run.
    """
    return {
        record.extension
        for record in DirectoryScanner(root)
        if record.extension
    }
