"""Data contracts for the synchronisation engine.

- ``FileRecord``: one physical file under a scan root (mutable, per run).
- ``SyncAction``: what to do with one destination outcome.
- ``PlanEntry``: one classified item of the action plan.
- ``SyncResult``: outcome of executing one plan entry.
- ``SyncReport``: aggregate results for a full run.
- ``RunStatus``: terminal status of a run.
- ``ProgressSnapshot``: numeric progress handed to listeners.
- ``AuditEntry``: one line of human-readable narration.

Everything except ``FileRecord`` is frozen (immutable).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable

from pydantic import BaseModel, Field


class SyncAction(str, Enum):
    """Classification of one plan entry."""

    SKIP = "skip"
    COPY = "copy"
    RENAME_IN_PLACE = "rename_in_place"
    QUARANTINE = "quarantine"


class RunStatus(str, Enum):
    """Terminal status reported to the presentation layer."""

    SUCCESS = "success"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AuditCategory(str, Enum):
    RUN = "run"
    SKIP = "skip"
    COPY = "copy"
    RENAME = "rename"
    QUARANTINE = "quarantine"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class FileRecord:
    """One file found by a scan.

    Attributes:
        relative_path: POSIX-style path relative to the scan root.
        absolute_path: Resolved location on disk.
        size_bytes: Size at scan time.
        extension: Lowercase suffix including the dot, or ``""``.
        embedded_checksum: Checksum parsed from the filename, if any.
        computed_checksum: Checksum of the bytes, filled in lazily.
    """

    relative_path: str
    absolute_path: Path
    size_bytes: int
    extension: str = ""
    embedded_checksum: str | None = None
    computed_checksum: str | None = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return PurePosixPath(self.relative_path).name

    def checksum(self, compute: Callable[[Path], str]) -> str:
        """Return the content checksum, computing it at most once."""
        if self.computed_checksum is None:
            self.computed_checksum = compute(self.absolute_path)
        return self.computed_checksum


class PlanEntry(BaseModel):
    """One classified item of the action plan.

    Attributes:
        action: The classification.
        relative_path: Source path for skip/copy/rename, destination path
            for quarantine.
        destination_path: Current destination path (None for copy).
        target_path: Destination path the bytes end up at (None for
            quarantine, which is placed by the executor).
        checksum: Content checksum, when known.
        size_bytes: Size of the file the entry moves or copies.
    """

    action: SyncAction
    relative_path: str
    destination_path: str | None = None
    target_path: str | None = None
    checksum: str | None = None
    size_bytes: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Result of executing one plan entry.

    Attributes:
        relative_path: Path the entry is about (see ``PlanEntry``).
        action: Action that was performed (or attempted).
        destination_path: Destination file the action started from.
        target_path: Final destination path on success.
        success: Whether the action completed.
        error: Error message if the action failed.
        error_type: Name of the error class (``IntegrityError`` ...).
    """

    relative_path: str
    action: SyncAction
    destination_path: str | None = None
    target_path: str | None = None
    success: bool
    error: str | None = None
    error_type: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a full run.

    Attributes:
        source_root: Source directory.
        destination_root: Destination directory.
        dry_run: Whether this was a dry-run (no changes applied).
        status: Terminal run status.
        results: List of individual results.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run ended.
        bytes_processed: Bytes read by hashing and copying.
        manifest_written: Whether the manifest was regenerated.
    """

    source_root: str
    destination_root: str
    dry_run: bool = False
    status: RunStatus
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None
    bytes_processed: int = 0
    manifest_written: bool = False

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action and r.success]

    @property
    def skipped(self) -> list[SyncResult]:
        return self._with_action(SyncAction.SKIP)

    @property
    def copied(self) -> list[SyncResult]:
        return self._with_action(SyncAction.COPY)

    @property
    def renamed(self) -> list[SyncResult]:
        return self._with_action(SyncAction.RENAME_IN_PLACE)

    @property
    def quarantined(self) -> list[SyncResult]:
        return self._with_action(SyncAction.QUARANTINE)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a short multi-line summary with counts by action."""
        lines = [
            f"Sync {self.source_root} -> {self.destination_root}"
            + (" (dry run)" if self.dry_run else ""),
            f"  Status:      {self.status.value}",
            f"  Copied:      {len(self.copied)}",
            f"  Renamed:     {len(self.renamed)}",
            f"  Quarantined: {len(self.quarantined)}",
            f"  Skipped:     {len(self.skipped)}",
            f"  Errors:      {len(self.errors)}",
            f"  Total:       {len(self.results)}",
        ]
        return "\n".join(lines)


class ProgressSnapshot(BaseModel):
    """Point-in-time progress figures.

    ``bytes_per_second`` is averaged over a short trailing window.
    """

    bytes_processed: int = 0
    total_bytes: int = 0
    elapsed_seconds: float = 0.0
    bytes_per_second: float = 0.0
    percent: float = 0.0
    current_path: str | None = None

    model_config = {"frozen": True}


class AuditEntry(BaseModel):
    """One immutable line of audit narration."""

    category: AuditCategory
    message: str
    relative_path: str | None = None
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    model_config = {"frozen": True}

    def render(self) -> str:
        """Return the line as written to the audit file."""
        stamp = self.recorded_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp}] {self.category.value.upper():<10} {self.message}"
