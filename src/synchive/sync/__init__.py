"""Checksum-based directory synchronisation engine.

Public API for bringing a destination directory tree in line with a source
tree, identifying files by the CRC-32 of their bytes rather than by name
or timestamp.

Architecture
------------
A run scans both trees, hashes every destination file before any source
is classified, and plans one action per file: skip, copy, rename in place
(the bytes are already at the destination under another name) or
quarantine (nothing in the source maps to it).  Destination files are never
deleted; orphans are moved under ``~leftovers/``.  A manifest
(``~listOfFilesInCRC.txt``) and an append-only audit trail
(``~auditTrail.txt``) are kept at the destination root.

Modules:

- ``engine``    -- ``SyncEngine``: orchestrates a run; ``SyncWorker`` runs
  one in the background.
- ``checksum``  -- streaming CRC-32.
- ``codec``     -- parse and embed checksums in filenames.
- ``scanner``   -- ``DirectoryScanner``: depth-first file enumeration.
- ``planner``   -- ``plan()``: checksum comparison and classification.
- ``executor``  -- ``PlanExecutor``: quarantine, renames and copies.
- ``manifest``  -- ``Manifest``: load/save the destination manifest.
- ``audit``     -- ``AuditTrail``: audit narration.
- ``progress``  -- ``ProgressAccountant``: byte counts, speed, percent.
- ``events``    -- ``RunListener`` contract and ``QueueListener``.
- ``models``    -- ``FileRecord``, ``SyncAction``, ``PlanEntry``,
  ``SyncResult``, ``SyncReport``, ``RunStatus``, ``ProgressSnapshot``,
  ``AuditEntry``: core data contracts.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from synchive.config import load_run_configuration
    from synchive.sync import (
        SyncEngine,
        format_dry_run_preview,
        format_sync_report,
    )

    config = load_run_configuration({"embed_checksum_in_filename": True})
    engine = SyncEngine("~/Pictures", "/mnt/backup/Pictures", config)

    # Dry-run first to preview changes
    preview = engine.run(dry_run=True)
    print(format_dry_run_preview(preview))

    # Execute the sync
    report = engine.run(dry_run=False)
    print(format_sync_report(report))
"""

from .audit import AuditTrail
from .engine import SyncEngine, SyncWorker
from .events import LoggingListener, NullListener, QueueListener, RunListener
from .manifest import Manifest
from .models import (
    AuditCategory,
    AuditEntry,
    FileRecord,
    PlanEntry,
    ProgressSnapshot,
    RunStatus,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .planner import SyncPlan, plan
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .scanner import DirectoryScanner, collect_extensions, scan

__all__ = [
    "AuditCategory",
    "AuditEntry",
    "AuditTrail",
    "DirectoryScanner",
    "FileRecord",
    "LoggingListener",
    "Manifest",
    "NullListener",
    "PlanEntry",
    "ProgressSnapshot",
    "QueueListener",
    "RunListener",
    "RunStatus",
    "SyncAction",
    "SyncEngine",
    "SyncPlan",
    "SyncReport",
    "SyncResult",
    "SyncWorker",
    "collect_extensions",
    "format_dry_run_preview",
    "format_sync_report",
    "plan",
    "report_to_json",
    "scan",
]
