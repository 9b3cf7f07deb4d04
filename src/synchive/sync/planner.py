"""Synchronisation planner.

Compares the source file set against the destination file set by content
checksum and produces the action plan:

1. Index every destination record by checksum (the whole destination must
   be hashed before any source is classified).
2. Work out the target path of every source: its relative path, with the
   checksum embedded in the filename when embedding applies.  Two sources
   that would land on the same target are separated with a ``_N`` suffix.
3. Claim destination records for sources with the same checksum.  Exact
   path matches are claimed first (``SKIP``); remaining sources take the
   candidate whose path is closest to their target by edit distance, ties
   going to scan order (``RENAME_IN_PLACE``).  Sources without a candidate
   become ``COPY``.
4. Every destination record left unclaimed becomes ``QUARANTINE``, except
   those sitting where an unreadable source would have gone.

Checksums embedded in filenames are only hints: every decision uses the
content checksum unless ``trust_filename_checksums`` is enabled and the
filename fast path applies.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from synchive.config_schema import RunConfiguration
from synchive.errors import SynchiveError

from .checksum import compute_checksum
from .codec import embed, get_extension, get_stem
from .models import FileRecord, PlanEntry, SyncAction

logger = logging.getLogger(__name__)


@dataclass
class PlanFailure:
    """A record that could not be classified."""

    relative_path: str
    side: str  # "source" or "destination"
    error: SynchiveError


@dataclass
class SyncPlan:
    """Output of ``plan()``.

    Attributes:
        entries: Classified entries; sources in scan order, then
            quarantines in destination scan order.
        failures: Records whose checksum could not be computed.
        warnings: ``(relative_path, message)`` notes for the audit trail.
        protected: Destination paths kept in place because the source
            that maps onto them could not be read.
    """

    entries: list[PlanEntry] = field(default_factory=list)
    failures: list[PlanFailure] = field(default_factory=list)
    warnings: list[tuple[str, str]] = field(default_factory=list)
    protected: set[str] = field(default_factory=set)

    def with_action(self, action: SyncAction) -> list[PlanEntry]:
        return [e for e in self.entries if e.action == action]


def target_path_for(
    record: FileRecord, checksum: str, config: RunConfiguration
) -> str:
    """Return the destination path *record* should end up at."""
    if (
        not config.embed_checksum_in_filename
        or record.embedded_checksum is not None
        or not config.is_extension_eligible(record.extension)
    ):
        return record.relative_path

    name = embed(
        record.name,
        get_extension(record.name),
        checksum,
        config.synthesis_delimiter.as_tuple(),
    )
    parent = PurePosixPath(record.relative_path).parent
    return name if str(parent) == "." else f"{parent}/{name}"


def suffixed_path(path: str, counter: int) -> str:
    """Insert ``_<counter>`` before the extension of *path*."""
    p = PurePosixPath(path)
    ext = get_extension(p.name)
    name = f"{get_stem(p.name, ext)}_{counter}{ext}"
    return name if str(p.parent) == "." else f"{p.parent}/{name}"


def _edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two paths."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def choose_candidate(
    candidates: list[FileRecord], target: str, source_path: str
) -> FileRecord:
    """Pick the destination record a source should claim.

    Exact target match, then exact source-path match, then the smallest
    edit distance to the target; ``min`` keeps scan order on ties.
    """
    for wanted in (target, source_path):
        for cand in candidates:
            if cand.relative_path == wanted:
                return cand
    return min(
        candidates, key=lambda c: _edit_distance(c.relative_path, target)
    )


def apply_filename_fast_path(
    source_records: Iterable[FileRecord],
    destination_records: Iterable[FileRecord],
    config: RunConfiguration,
) -> list[str]:
    """Trust matching embedded checksums instead of hashing.

    When a source and the destination record at the same path both carry
    the same embedded checksum, that value is stored as the computed
    checksum of both records.  No-op unless ``trust_filename_checksums``
    is set.

    Returns:
        Relative paths of the sources that took the fast path.
    """
    if not config.trust_filename_checksums:
        return []

    by_path = {d.relative_path: d for d in destination_records}
    trusted: list[str] = []
    for src in source_records:
        if src.embedded_checksum is None:
            continue
        dest = by_path.get(src.relative_path)
        if dest is None or dest.embedded_checksum != src.embedded_checksum:
            continue
        src.computed_checksum = src.embedded_checksum
        dest.computed_checksum = dest.embedded_checksum
        trusted.append(src.relative_path)

    logger.debug("Filename fast path applied to %d files", len(trusted))
    return trusted


def plan(
    source_records: Iterable[FileRecord],
    destination_records: Iterable[FileRecord],
    config: RunConfiguration,
    checksum_of: Callable[[FileRecord], str] | None = None,
) -> SyncPlan:
    """Classify every source and destination record.

    Args:
        source_records: Records of the source tree, in scan order.
        destination_records: Records of the destination tree, in scan order.
        config: Run configuration.
        checksum_of: Returns the content checksum of a record, raising a
            ``SynchiveError`` when it cannot.  Defaults to streaming the
            file once and memoising the result on the record.

    Returns:
        The ``SyncPlan``.
    """
    if checksum_of is None:

        def checksum_of(record: FileRecord) -> str:
            return record.checksum(
                lambda p: compute_checksum(p, config.chunk_size)
            )

    sources = list(source_records)
    destinations = list(destination_records)
    result = SyncPlan()

    # Step 1: destination index (barrier before classification)
    index: dict[str, list[FileRecord]] = defaultdict(list)
    readable: list[FileRecord] = []
    for dest in destinations:
        try:
            crc = checksum_of(dest)
        except SynchiveError as exc:
            result.failures.append(
                PlanFailure(dest.relative_path, "destination", exc)
            )
            continue
        _note_mismatch(result, dest, crc)
        index[crc].append(dest)
        readable.append(dest)

    # Step 2: source checksums and target paths
    classified: list[tuple[FileRecord, str, str]] = []
    reserved: set[str] = set()
    for src in sources:
        try:
            crc = checksum_of(src)
        except SynchiveError as exc:
            result.failures.append(
                PlanFailure(src.relative_path, "source", exc)
            )
            result.protected.update(
                _paths_owned_by(src, destinations, config)
            )
            continue
        _note_mismatch(result, src, crc)

        target = target_path_for(src, crc, config)
        candidate, counter = target, 1
        while candidate in reserved:
            candidate = suffixed_path(target, counter)
            counter += 1
        reserved.add(candidate)
        classified.append((src, crc, candidate))

    # Step 3: claims, exact matches first
    claimed: dict[str, FileRecord] = {}
    decided: dict[str, PlanEntry] = {}
    for src, crc, target in classified:
        for dest in index.get(crc, []):
            if dest.relative_path == target and target not in claimed:
                claimed[target] = src
                decided[src.relative_path] = PlanEntry(
                    action=SyncAction.SKIP,
                    relative_path=src.relative_path,
                    destination_path=target,
                    target_path=target,
                    checksum=crc,
                    size_bytes=src.size_bytes,
                )
                break

    for src, crc, target in classified:
        if src.relative_path in decided:
            continue
        candidates = [
            d for d in index.get(crc, []) if d.relative_path not in claimed
        ]
        if candidates:
            best = choose_candidate(candidates, target, src.relative_path)
            claimed[best.relative_path] = src
            entry = PlanEntry(
                action=SyncAction.RENAME_IN_PLACE,
                relative_path=src.relative_path,
                destination_path=best.relative_path,
                target_path=target,
                checksum=crc,
                size_bytes=best.size_bytes,
            )
        else:
            entry = PlanEntry(
                action=SyncAction.COPY,
                relative_path=src.relative_path,
                target_path=target,
                checksum=crc,
                size_bytes=src.size_bytes,
            )
        decided[src.relative_path] = entry

    result.entries.extend(decided[src.relative_path] for src, _, _ in classified)

    # Step 4: quarantine what nothing claimed
    for dest in readable:
        if dest.relative_path in claimed:
            continue
        if dest.relative_path in result.protected:
            logger.info(
                "Keeping %s: its source could not be read",
                dest.relative_path,
            )
            continue
        result.entries.append(
            PlanEntry(
                action=SyncAction.QUARANTINE,
                relative_path=dest.relative_path,
                destination_path=dest.relative_path,
                checksum=dest.computed_checksum,
                size_bytes=dest.size_bytes,
            )
        )

    return result


def _note_mismatch(result: SyncPlan, record: FileRecord, crc: str) -> None:
    if record.embedded_checksum and record.embedded_checksum != crc:
        result.warnings.append(
            (
                record.relative_path,
                f"filename checksum {record.embedded_checksum.upper()} "
                f"does not match content checksum {crc.upper()}",
            )
        )


def _paths_owned_by(
    src: FileRecord,
    destinations: list[FileRecord],
    config: RunConfiguration,
) -> set[str]:
    """Destination paths an unreadable source would have mapped onto."""
    owned = {src.relative_path}
    for dest in destinations:
        if dest.embedded_checksum and dest.relative_path == target_path_for(
            src, dest.embedded_checksum, config
        ):
            owned.add(dest.relative_path)
    return owned
