"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-run summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport, SyncResult

from .models import SyncAction
from .progress import format_bytes

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _printable(text: str) -> str:
    """Escape characters a UTF-8 terminal cannot show (undecodable names)."""
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def _describe(result: SyncResult) -> str:
    if result.action == SyncAction.RENAME_IN_PLACE:
        return f"{result.destination_path} -> {result.target_path}"
    if result.target_path and result.target_path != result.relative_path:
        return f"{result.relative_path} -> {result.target_path}"
    return result.relative_path


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged paths are summarised by count only to avoid excessive output.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    # Header
    header = f"Sync report: {report.source_root} -> {report.destination_root}"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Status: {report.status.value}")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append(f"Read: {format_bytes(report.bytes_processed)}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} files: "
        f"{len(report.copied)} copied, {len(report.renamed)} renamed, "
        f"{len(report.quarantined)} quarantined, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    sections = [
        ("Copied:", report.copied),
        ("Renamed:", report.renamed),
        ("Quarantined:", report.quarantined),
    ]
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            lines.append(f"  {_describe(r)}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            kind = f"{r.error_type}: " if r.error_type else ""
            lines.append(f"  {kind}{r.error or r.relative_path}")
        lines.append("")

    if report.skipped:
        lines.append(f"Unchanged: {len(report.skipped)} files")
        lines.append("")

    if not report.dry_run and not report.manifest_written:
        lines.append("Manifest not rewritten; the previous one is kept.")
        lines.append("")

    return _printable("\n".join(lines).rstrip())


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed action is shown on its own line under an ``[ACTION]``
    heading.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Source: {report.source_root}")
    lines.append(f"Destination: {report.destination_root}")
    lines.append("")

    groups: dict[SyncAction, list[SyncResult]] = defaultdict(list)
    for r in report.results:
        if r.success:
            groups[r.action].append(r)

    # Same order the executor applies them in
    display_order = [
        SyncAction.QUARANTINE,
        SyncAction.RENAME_IN_PLACE,
        SyncAction.COPY,
    ]

    for action in display_order:
        if action not in groups:
            continue
        label = action.value.upper().replace("_", " ")
        lines.append(f"[{label}]")
        for r in groups[action]:
            lines.append(f"  {_describe(r)}")
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, []))
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} files (unchanged)")
        lines.append("")

    if report.errors:
        lines.append("Unreadable:")
        for r in report.errors:
            lines.append(f"  {r.error or r.relative_path}")
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return _printable("\n".join(lines).rstrip())


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "relative_path": r.relative_path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.destination_path:
            entry["destination_path"] = r.destination_path
        if r.target_path:
            entry["target_path"] = r.target_path
        if r.error:
            entry["error"] = r.error
            entry["error_type"] = r.error_type
        results_list.append(entry)

    return {
        "source_root": report.source_root,
        "destination_root": report.destination_root,
        "dry_run": report.dry_run,
        "status": report.status.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "bytes_processed": report.bytes_processed,
        "manifest_written": report.manifest_written,
        "counts": {
            "total": len(report.results),
            "copied": len(report.copied),
            "renamed": len(report.renamed),
            "quarantined": len(report.quarantined),
            "skipped": len(report.skipped),
            "errors": len(report.errors),
        },
        "results": results_list,
    }
