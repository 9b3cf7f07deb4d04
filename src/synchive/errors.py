"""Error taxonomy for the synchronisation engine.

Per-file errors (``IntegrityError``, ``FilesystemError``) are caught by the
engine, recorded in the audit trail with the offending relative path, and
never abort a run.  ``ConfigurationError`` is raised before any file is
touched.
"""

from __future__ import annotations


class SynchiveError(Exception):
    """Base class for all synchive errors."""


class IntegrityError(SynchiveError):
    """A file could not be read while checksumming or copying it.

    Also raised when the bytes written by a copy do not checksum to the
    value computed for the source.
    """

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail


class FilesystemError(SynchiveError):
    """A rename, move or directory creation failed."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail


class ConfigurationError(SynchiveError):
    """The run configuration or the run roots are unusable."""


class AmbiguousChecksumError(SynchiveError):
    """Several checksum candidates were found for one filename.

    Never raised: ambiguity is resolved deterministically (rightmost
    match for filenames, closest path for destination candidates).
    """
