"""Plan execution and quarantine.

Applies a ``SyncPlan`` to the destination tree.  Entries run grouped by
action:

1. ``SKIP`` entries are audited, no I/O.
2. ``QUARANTINE`` moves destination files into ``~leftovers/`` at the
   destination root, keeping their relative path (``_N`` suffix on
   collision).  This frees target paths before anything is written.
3. ``RENAME_IN_PLACE`` moves are staged: every file is first moved to a
   temporary sibling name, then to its target, so renames that swap or
   chain paths never overwrite each other.
4. ``COPY`` streams source bytes into a ``.<name>.synchive-partial``
   sibling, verifies the checksum of the bytes written and renames the
   partial file into place.

Per-file failures become failed ``SyncResult`` objects and audit lines;
they never stop the run.  Cancellation is checked between files and
between the chunks of a copy; a cancelled copy deletes its partial file.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path, PurePosixPath

from synchive.config_schema import RunConfiguration
from synchive.errors import FilesystemError, IntegrityError, SynchiveError

from .audit import AuditTrail
from .checksum import RunningChecksum
from .models import AuditCategory, PlanEntry, SyncAction, SyncResult
from .planner import SyncPlan, suffixed_path
from .progress import ProgressAccountant
from .scanner import LEFTOVER_DIR_NAME, PARTIAL_SUFFIX, STAGING_SUFFIX

logger = logging.getLogger(__name__)


class CopyCancelled(Exception):
    """Raised inside a copy when the run is cancelled mid-stream."""


def partial_path_for(target: Path) -> Path:
    return target.with_name(f".{target.name}{PARTIAL_SUFFIX}")


class PlanExecutor:
    """Carries out one plan against the destination root.

    Args:
        source_root: Root the plan's source paths are relative to.
        destination_root: Root the plan's destination paths are relative to.
        config: Run configuration (chunk size).
        trail: Audit trail receiving one line per action or failure.
        progress: Accountant credited with every byte copied.
        cancel_event: Set to stop issuing new actions.
    """

    def __init__(
        self,
        source_root: Path,
        destination_root: Path,
        config: RunConfiguration,
        trail: AuditTrail,
        progress: ProgressAccountant | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._src_root = source_root
        self._dest_root = destination_root
        self._config = config
        self._trail = trail
        self._progress = progress or ProgressAccountant()
        self._cancel = cancel_event or threading.Event()
        self.cancelled = False

    def execute(self, plan: SyncPlan) -> list[SyncResult]:
        """Run every entry of *plan* and return the results.

        Entries not reached because of cancellation have no result.
        """
        results: list[SyncResult] = []

        for entry in plan.with_action(SyncAction.SKIP):
            self._trail.record(
                AuditCategory.SKIP,
                f"Unchanged {entry.target_path}",
                entry.relative_path,
            )
            results.append(self._ok(entry, entry.target_path))

        for entry in plan.with_action(SyncAction.QUARANTINE):
            if self._should_stop():
                return results
            results.append(self._run_one(entry, self._quarantine))

        renames = plan.with_action(SyncAction.RENAME_IN_PLACE)
        results.extend(self._rename_all(renames))
        if self.cancelled:
            return results

        for entry in plan.with_action(SyncAction.COPY):
            if self._should_stop():
                return results
            results.append(self._run_one(entry, self._copy))
            if self.cancelled:
                return results

        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _should_stop(self) -> bool:
        if self._cancel.is_set():
            self.cancelled = True
        return self.cancelled

    def _dest(self, relative_path: str) -> Path:
        return self._dest_root.joinpath(*PurePosixPath(relative_path).parts)

    @staticmethod
    def _ok(entry: PlanEntry, target_path: str | None) -> SyncResult:
        return SyncResult(
            relative_path=entry.relative_path,
            action=entry.action,
            destination_path=entry.destination_path,
            target_path=target_path,
            success=True,
        )

    def _failed(self, entry: PlanEntry, exc: SynchiveError) -> SyncResult:
        logger.error(
            "%s failed for %s: %s", entry.action.value, entry.relative_path, exc
        )
        self._trail.error(entry.relative_path, exc)
        return SyncResult(
            relative_path=entry.relative_path,
            action=entry.action,
            success=False,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def _run_one(self, entry: PlanEntry, action) -> SyncResult:
        self._progress.set_current(entry.relative_path)
        try:
            final = action(entry)
        except CopyCancelled:
            self.cancelled = True
            return SyncResult(
                relative_path=entry.relative_path,
                action=entry.action,
                success=False,
                error="cancelled",
            )
        except SynchiveError as exc:
            return self._failed(entry, exc)
        return self._ok(entry, final)

    def _make_parent(self, path: Path, relative_path: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(
                relative_path, f"cannot create directory: {exc.strerror or exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Quarantine
    # ------------------------------------------------------------------

    def leftover_path_for(self, relative_path: str) -> str:
        """Free path under the leftover directory for *relative_path*."""
        wanted = f"{LEFTOVER_DIR_NAME}/{relative_path}"
        candidate, counter = wanted, 1
        while self._dest(candidate).exists():
            candidate = suffixed_path(wanted, counter)
            counter += 1
        return candidate

    def _quarantine(self, entry: PlanEntry) -> str:
        source = self._dest(entry.relative_path)
        leftover = self.leftover_path_for(entry.relative_path)
        target = self._dest(leftover)
        self._make_parent(target, leftover)
        try:
            os.rename(source, target)
        except OSError as exc:
            raise FilesystemError(
                entry.relative_path,
                f"cannot move to {leftover}: {exc.strerror or exc}",
            ) from exc
        self._trail.record(
            AuditCategory.QUARANTINE,
            f"Moved {entry.relative_path} to {leftover}",
            entry.relative_path,
        )
        return leftover

    # ------------------------------------------------------------------
    # Renames
    # ------------------------------------------------------------------

    def _rename_all(self, entries: list[PlanEntry]) -> list[SyncResult]:
        results: list[SyncResult] = []
        staged: list[tuple[PlanEntry, Path]] = []

        for index, entry in enumerate(entries):
            if self._should_stop():
                break
            current = self._dest(entry.destination_path)
            temp = current.with_name(f".{current.name}{STAGING_SUFFIX}-{index}")
            try:
                os.rename(current, temp)
            except OSError as exc:
                results.append(
                    self._failed(
                        entry,
                        FilesystemError(
                            entry.destination_path,
                            f"cannot rename: {exc.strerror or exc}",
                        ),
                    )
                )
                continue
            staged.append((entry, temp))

        # Every staged file must reach a real name, even after cancellation
        for entry, temp in staged:
            self._progress.set_current(entry.relative_path)
            try:
                self._finish_rename(entry, temp)
            except SynchiveError as exc:
                results.append(self._failed(entry, exc))
                continue
            self._trail.record(
                AuditCategory.RENAME,
                f"Renamed {entry.destination_path} -> {entry.target_path}",
                entry.relative_path,
            )
            results.append(self._ok(entry, entry.target_path))
        return results

    def _finish_rename(self, entry: PlanEntry, temp: Path) -> None:
        target = self._dest(entry.target_path)
        try:
            if target.exists():
                raise FilesystemError(
                    entry.target_path, "target already exists"
                )
            self._make_parent(target, entry.target_path)
            try:
                os.rename(temp, target)
            except OSError as exc:
                raise FilesystemError(
                    entry.target_path, f"cannot rename: {exc.strerror or exc}"
                ) from exc
        except FilesystemError:
            # Put the file back where it was found
            try:
                os.rename(temp, self._dest(entry.destination_path))
            except OSError:
                logger.error(
                    "Could not restore %s; it remains at %s",
                    entry.destination_path,
                    temp,
                )
            raise

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def _copy(self, entry: PlanEntry) -> str:
        source = self._src_root.joinpath(*PurePosixPath(entry.relative_path).parts)
        target = self._dest(entry.target_path)
        if target.exists():
            raise FilesystemError(entry.target_path, "target already exists")
        self._make_parent(target, entry.target_path)

        partial = partial_path_for(target)
        try:
            digest = self._stream(source, partial, entry)
            if entry.checksum is not None and digest != entry.checksum:
                raise IntegrityError(
                    entry.relative_path,
                    f"copied bytes checksum to {digest.upper()}, "
                    f"expected {entry.checksum.upper()}",
                )
            try:
                shutil.copystat(source, partial)
            except OSError as exc:
                logger.warning(
                    "Cannot copy metadata of %s: %s", entry.relative_path, exc
                )
            try:
                os.replace(partial, target)
            except OSError as exc:
                raise FilesystemError(
                    entry.target_path,
                    f"cannot rename into place: {exc.strerror or exc}",
                ) from exc
        except BaseException:
            try:
                partial.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.error("Cannot remove partial copy %s: %s", partial, exc)
            raise

        if entry.target_path == entry.relative_path:
            message = f"Copied {entry.relative_path}"
        else:
            message = f"Copied {entry.relative_path} -> {entry.target_path}"
        self._trail.record(AuditCategory.COPY, message, entry.relative_path)
        return entry.target_path

    def _stream(self, source: Path, partial: Path, entry: PlanEntry) -> str:
        running = RunningChecksum()
        try:
            src = open(source, "rb")
        except OSError as exc:
            raise IntegrityError(
                entry.relative_path, f"unable to read: {exc.strerror or exc}"
            ) from exc
        with src:
            try:
                dst = open(partial, "wb")
            except OSError as exc:
                raise FilesystemError(
                    entry.target_path, f"cannot write: {exc.strerror or exc}"
                ) from exc
            with dst:
                while True:
                    if self._cancel.is_set():
                        raise CopyCancelled(entry.relative_path)
                    try:
                        chunk = src.read(self._config.chunk_size)
                    except OSError as exc:
                        raise IntegrityError(
                            entry.relative_path,
                            f"unable to read: {exc.strerror or exc}",
                        ) from exc
                    if not chunk:
                        break
                    try:
                        dst.write(chunk)
                    except OSError as exc:
                        raise FilesystemError(
                            entry.target_path,
                            f"cannot write: {exc.strerror or exc}",
                        ) from exc
                    running.update(chunk)
                    self._progress.add(len(chunk))
        return running.hexdigest()
