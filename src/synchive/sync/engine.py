"""Core sync engine that orchestrates one synchronisation run.

The ``SyncEngine`` ties together scanner, checksum pool, planner, executor,
manifest and audit trail.  It:

1. Validates the roots (``ConfigurationError`` before any file is touched).
2. Scans both trees and sizes the work for progress accounting.
3. Hashes every destination file on a bounded thread pool, then every
   source file.  The destination index is complete before any source is
   classified.
4. Plans, audits plan warnings and failures, and compares live checksums
   with the prior manifest.
5. Executes the plan (unless ``dry_run``).
6. Rewrites the manifest from the final destination state, unless the run
   was cancelled, and flushes the audit trail.
7. Builds and returns a ``SyncReport``.

Error handling is per-file: a single unreadable or immovable file does not
abort the run.  ``SyncWorker`` runs an engine on a background thread.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path

from synchive.config_schema import RunConfiguration
from synchive.errors import (
    ConfigurationError,
    FilesystemError,
    SynchiveError,
)

from .audit import AuditTrail
from .checksum import compute_checksum
from .events import NullListener, RunListener
from .executor import PlanExecutor
from .manifest import Manifest
from .models import (
    AuditCategory,
    FileRecord,
    PlanEntry,
    RunStatus,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .planner import SyncPlan, apply_filename_fast_path, plan
from .progress import ProgressAccountant
from .scanner import AUDIT_FILE_NAME, MANIFEST_FILE_NAME, DirectoryScanner

logger = logging.getLogger(__name__)

_DRY_RUN_VERBS = {
    SyncAction.SKIP: "Would keep",
    SyncAction.COPY: "Would copy",
    SyncAction.RENAME_IN_PLACE: "Would rename",
    SyncAction.QUARANTINE: "Would quarantine",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def check_roots(source_root: Path, destination_root: Path) -> None:
    """Reject unusable run roots.

    Raises:
        ConfigurationError: If the source is not a directory, the
            destination exists but is not a directory, or one root
            contains the other.
    """
    if not source_root.is_dir():
        raise ConfigurationError(
            f"Source directory does not exist: {source_root}"
        )
    if destination_root.exists() and not destination_root.is_dir():
        raise ConfigurationError(
            f"Destination is not a directory: {destination_root}"
        )
    if source_root == destination_root:
        raise ConfigurationError(
            "Source and destination are the same directory"
        )
    if (
        source_root in destination_root.parents
        or destination_root in source_root.parents
    ):
        raise ConfigurationError(
            "Source and destination must not be nested inside each other"
        )


def _is_under(path: str, directories: list[str]) -> bool:
    return any(
        d == "." or path == d or path.startswith(d + "/") for d in directories
    )


def _protect_unlisted(sync_plan: SyncPlan, directories: list[str]) -> None:
    """Keep destination files whose source directory could not be listed."""
    kept: list[PlanEntry] = []
    for entry in sync_plan.entries:
        if entry.action == SyncAction.QUARANTINE and _is_under(
            entry.relative_path, directories
        ):
            sync_plan.protected.add(entry.relative_path)
            continue
        kept.append(entry)
    sync_plan.entries = kept


class SyncEngine:
    """Synchronise one source tree into one destination tree.

    Args:
        source_root: Directory whose files are authoritative.
        destination_root: Directory brought in line with the source.
            Created if missing.
        config: Settings snapshot for the run.
        listener: Receives audit, progress and status events.
        cancel_event: Set (from any thread) to stop the run between files.
    """

    def __init__(
        self,
        source_root: str | Path,
        destination_root: str | Path,
        config: RunConfiguration | None = None,
        listener: RunListener | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.source_root = Path(source_root).expanduser().resolve()
        self.destination_root = Path(destination_root).expanduser().resolve()
        self.config = config or RunConfiguration()
        self.listener = listener or NullListener()
        self.cancel_event = cancel_event or threading.Event()
        self._hash_errors: dict[int, SynchiveError] = {}

    def cancel(self) -> None:
        """Ask the run to stop after the current file."""
        self.cancel_event.set()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncReport:
        """Execute a full synchronisation run.

        Args:
            dry_run: If ``True``, scan, hash and plan but change nothing.

        Returns:
            A ``SyncReport`` summarising what was (or would be) done.

        Raises:
            ConfigurationError: If the roots are unusable.  The listener
                receives ``RunStatus.FAILED`` first.
        """
        started_at = _now()
        try:
            check_roots(self.source_root, self.destination_root)
            if not dry_run:
                try:
                    self.destination_root.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise ConfigurationError(
                        f"Cannot create destination {self.destination_root}: "
                        f"{exc.strerror or exc}"
                    ) from exc
        except ConfigurationError as exc:
            logger.error("Run not started: %s", exc)
            self.listener.on_status(RunStatus.FAILED)
            raise

        trail = AuditTrail(
            None if dry_run else self.destination_root / AUDIT_FILE_NAME,
            self.listener,
        )
        trail.record(
            AuditCategory.RUN,
            f"Sync {self.source_root} -> {self.destination_root}"
            + (" (dry run)" if dry_run else ""),
        )
        self._hash_errors = {}
        had_errors = False
        unlisted_sources: list[str] = []

        # Step 1: scan
        def scan_error(side: str):
            def handler(rel_dir: str, exc: OSError) -> None:
                nonlocal had_errors
                had_errors = True
                if side == "source":
                    unlisted_sources.append(rel_dir)
                trail.error(
                    rel_dir,
                    FilesystemError(
                        rel_dir,
                        f"cannot list {side} directory: {exc.strerror or exc}",
                    ),
                )

            return handler

        sources = list(self._scanner(self.source_root, scan_error("source")))
        destinations = list(
            self._scanner(self.destination_root, scan_error("destination"))
        )
        logger.info(
            "Scanned %d source and %d destination files",
            len(sources),
            len(destinations),
        )

        progress = ProgressAccountant(
            emit=self.listener.on_progress,
            min_interval=self.config.progress_interval,
        )
        try:
            prior = Manifest.load(self.destination_root)
        except OSError as exc:
            trail.record(
                AuditCategory.WARNING,
                f"{MANIFEST_FILE_NAME}: previous manifest unreadable ({exc})",
                MANIFEST_FILE_NAME,
            )
            prior = Manifest()

        # Step 2: checksums (destination index first)
        trusted = apply_filename_fast_path(sources, destinations, self.config)
        if trusted:
            trail.record(
                AuditCategory.RUN,
                f"Trusted filename checksums for {len(trusted)} files",
            )
        pending = [
            r for r in destinations + sources if r.computed_checksum is None
        ]
        hash_bytes = sum(r.size_bytes for r in pending)
        # Copies are bounded by the source volume until the plan is known
        copy_bound = 0 if dry_run else sum(r.size_bytes for r in sources)
        progress.add_total(hash_bytes + copy_bound)
        self._hash_all(
            [r for r in destinations if r.computed_checksum is None], progress
        )
        if not self.cancel_event.is_set():
            self._hash_all(
                [r for r in sources if r.computed_checksum is None], progress
            )
        if self.cancel_event.is_set():
            return self._finish(
                trail, progress, started_at, dry_run, [], RunStatus.CANCELLED
            )

        # Step 3: plan
        sync_plan = plan(sources, destinations, self.config, self._checksum_of)
        if unlisted_sources:
            _protect_unlisted(sync_plan, unlisted_sources)
        results = self._audit_plan(trail, sync_plan, destinations, prior)
        had_errors = had_errors or bool(sync_plan.failures)

        if dry_run:
            for entry in sync_plan.entries:
                trail.record(
                    AuditCategory.RUN,
                    self._describe(entry),
                    entry.relative_path,
                )
                results.append(
                    SyncResult(
                        relative_path=entry.relative_path,
                        action=entry.action,
                        destination_path=entry.destination_path,
                        target_path=entry.target_path,
                        success=True,
                    )
                )
            status = (
                RunStatus.COMPLETED_WITH_ERRORS
                if had_errors
                else RunStatus.SUCCESS
            )
            return self._finish(
                trail, progress, started_at, dry_run, results, status
            )

        # Step 4: execute
        copy_bytes = sum(
            e.size_bytes for e in sync_plan.with_action(SyncAction.COPY)
        )
        progress.set_total(hash_bytes + min(copy_bytes, copy_bound))
        executor = PlanExecutor(
            self.source_root,
            self.destination_root,
            self.config,
            trail,
            progress,
            self.cancel_event,
        )
        executed = executor.execute(sync_plan)
        results.extend(executed)
        if executor.cancelled:
            return self._finish(
                trail, progress, started_at, dry_run, results,
                RunStatus.CANCELLED,
            )

        # Step 5: manifest from the final state
        had_errors = had_errors or any(not r.success for r in executed)
        manifest = self.final_manifest(destinations, sync_plan, executed)
        manifest_written = False
        try:
            manifest.save(self.destination_root)
            manifest_written = True
        except OSError as exc:
            had_errors = True
            trail.error(
                MANIFEST_FILE_NAME,
                FilesystemError(
                    str(Manifest.path_for(self.destination_root)),
                    f"cannot write manifest: {exc.strerror or exc}",
                ),
            )

        status = (
            RunStatus.COMPLETED_WITH_ERRORS if had_errors else RunStatus.SUCCESS
        )
        return self._finish(
            trail, progress, started_at, dry_run, results, status,
            manifest_written=manifest_written,
        )

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def _scanner(self, root: Path, on_error) -> DirectoryScanner:
        return DirectoryScanner(
            root,
            self.config.delimiter_pairs,
            self.config.scan_without_delimiters,
            on_error,
        )

    def _hash_one(self, record: FileRecord, progress: ProgressAccountant) -> None:
        if self.cancel_event.is_set():
            return
        progress.set_current(record.relative_path)
        try:
            record.checksum(
                lambda p: compute_checksum(
                    p, self.config.chunk_size, progress.add
                )
            )
        except SynchiveError as exc:
            logger.warning("Cannot checksum %s: %s", record.relative_path, exc)
            self._hash_errors[id(record)] = exc

    def _hash_all(
        self, records: list[FileRecord], progress: ProgressAccountant
    ) -> None:
        """Checksum *records* on the worker pool and wait for all of them."""
        if not records:
            return
        with ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="synchive-hash",
        ) as pool:
            futures = [
                pool.submit(self._hash_one, record, progress)
                for record in records
            ]
            for future in as_completed(futures):
                future.result()

    def _checksum_of(self, record: FileRecord) -> str:
        error = self._hash_errors.get(id(record))
        if error is not None:
            raise error
        return record.checksum(
            lambda p: compute_checksum(p, self.config.chunk_size)
        )

    # ------------------------------------------------------------------
    # Audit helpers
    # ------------------------------------------------------------------

    def _audit_plan(
        self,
        trail: AuditTrail,
        sync_plan: SyncPlan,
        destinations: list[FileRecord],
        prior: Manifest,
    ) -> list[SyncResult]:
        """Audit plan notes and return failed results for unreadable files."""
        results: list[SyncResult] = []
        for failure in sync_plan.failures:
            trail.error(failure.relative_path, failure.error)
            results.append(
                SyncResult(
                    relative_path=failure.relative_path,
                    action=SyncAction.SKIP,
                    success=False,
                    error=str(failure.error),
                    error_type=type(failure.error).__name__,
                )
            )
        for rel, message in sync_plan.warnings:
            trail.record(AuditCategory.WARNING, f"{rel}: {message}", rel)

        present = set()
        for dest in destinations:
            present.add(dest.relative_path)
            recorded = prior.get(dest.relative_path)
            if (
                recorded is not None
                and dest.computed_checksum is not None
                and recorded != dest.computed_checksum
            ):
                trail.record(
                    AuditCategory.WARNING,
                    f"{dest.relative_path}: changed since last run "
                    f"({recorded.upper()} -> {dest.computed_checksum.upper()})",
                    dest.relative_path,
                )
        for rel in prior:
            if rel not in present:
                trail.record(
                    AuditCategory.WARNING,
                    f"{rel}: listed in the previous manifest but missing",
                    rel,
                )
        return results

    @staticmethod
    def _describe(entry: PlanEntry) -> str:
        verb = _DRY_RUN_VERBS[entry.action]
        if entry.action == SyncAction.RENAME_IN_PLACE:
            return f"{verb} {entry.destination_path} -> {entry.target_path}"
        if entry.action == SyncAction.COPY and entry.target_path != entry.relative_path:
            return f"{verb} {entry.relative_path} -> {entry.target_path}"
        return f"{verb} {entry.relative_path}"

    # ------------------------------------------------------------------
    # Manifest and report
    # ------------------------------------------------------------------

    @staticmethod
    def final_manifest(
        destinations: list[FileRecord],
        sync_plan: SyncPlan,
        results: list[SyncResult],
    ) -> Manifest:
        """Destination state after *results*, as a manifest.

        Starts from every destination file that was hashed and applies each
        successful action; failed actions leave the file where it was.
        """
        manifest = Manifest(
            {
                d.relative_path: d.computed_checksum
                for d in destinations
                if d.computed_checksum is not None
            }
        )
        entries = {(e.action, e.relative_path): e for e in sync_plan.entries}
        for result in results:
            if not result.success:
                continue
            entry = entries.get((result.action, result.relative_path))
            if entry is None or entry.action == SyncAction.SKIP:
                continue
            if entry.action == SyncAction.QUARANTINE:
                manifest.remove(entry.relative_path)
                continue
            if entry.action == SyncAction.RENAME_IN_PLACE:
                manifest.remove(entry.destination_path)
            if entry.checksum is None:
                manifest.remove(entry.target_path)
            else:
                manifest.set(entry.target_path, entry.checksum)
        return manifest

    def _finish(
        self,
        trail: AuditTrail,
        progress: ProgressAccountant,
        started_at: str,
        dry_run: bool,
        results: list[SyncResult],
        status: RunStatus,
        manifest_written: bool = False,
    ) -> SyncReport:
        progress.set_current(None)
        progress.flush()
        trail.record(AuditCategory.RUN, progress.status_line())
        report = SyncReport(
            source_root=str(self.source_root),
            destination_root=str(self.destination_root),
            dry_run=dry_run,
            status=status,
            results=results,
            started_at=started_at,
            completed_at=_now(),
            bytes_processed=progress.bytes_processed,
            manifest_written=manifest_written,
        )
        if status == RunStatus.CANCELLED:
            trail.record(
                AuditCategory.RUN, "Run cancelled; manifest left unchanged"
            )
        trail.record(
            AuditCategory.RUN,
            f"Finished with status {status.value}: "
            f"{len(report.copied)} copied, {len(report.renamed)} renamed, "
            f"{len(report.quarantined)} quarantined, "
            f"{len(report.skipped)} unchanged, {len(report.errors)} errors",
        )
        try:
            trail.flush()
        except OSError as exc:
            logger.error("Cannot write audit trail %s: %s", trail.path, exc)
        logger.info("Run finished: %s", status.value)
        self.listener.on_status(status)
        return report


class SyncWorker:
    """Runs one ``SyncEngine.run`` on a background thread.

    Usage::

        worker = SyncWorker(engine, dry_run=False)
        worker.start()
        ...
        worker.cancel()
        report = worker.join()
    """

    def __init__(self, engine: SyncEngine, dry_run: bool = False) -> None:
        self.engine = engine
        self.dry_run = dry_run
        self.report: SyncReport | None = None
        self.error: BaseException | None = None
        self._thread = threading.Thread(
            target=self._target, name="synchive-run", daemon=True
        )

    def _target(self) -> None:
        try:
            self.report = self.engine.run(dry_run=self.dry_run)
        except BaseException as exc:
            self.error = exc

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self.engine.cancel()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> SyncReport | None:
        """Wait for the run and return its report.

        Returns ``None`` if *timeout* expired first.  An exception raised
        by the run (``ConfigurationError``) is re-raised here.
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        if self.error is not None:
            raise self.error
        return self.report
