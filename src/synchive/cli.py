"""Command line front end.

Sub-commands:

- ``synchive sync SOURCE DEST`` runs (or previews) a synchronisation.
- ``synchive extensions ROOT`` lists the file extensions found under ROOT.
- ``synchive init-config`` writes a commented starter YAML config.

Exit codes for ``sync``: 0 success, 1 completed with errors, 2 configuration
error, 130 cancelled.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from . import __version__
from .config import load_run_configuration
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import ConfigurationError
from .logger import setup_logging
from .sync import (
    LoggingListener,
    QueueListener,
    RunStatus,
    SyncEngine,
    SyncReport,
    SyncWorker,
    collect_extensions,
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

_EXIT_CODES = {
    RunStatus.SUCCESS: EXIT_OK,
    RunStatus.COMPLETED_WITH_ERRORS: EXIT_ERRORS,
    RunStatus.FAILED: EXIT_CONFIG,
    RunStatus.CANCELLED: EXIT_CANCELLED,
}

_POLL_SECONDS = 0.2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="synchive",
        description="Checksum-based directory synchronisation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what a sync would do
  synchive sync ~/Pictures /mnt/backup/Pictures --dry-run

  # Sync and write CRC-32 checksums into destination filenames
  synchive sync ~/Pictures /mnt/backup/Pictures --embed

  # Only embed checksums in video files
  synchive sync ~/Videos /mnt/backup/Videos --embed --extensions ".mkv, .mp4"

  # List the extensions present under a directory
  synchive extensions ~/Videos

Settings are read from CLI flags, SYNCHIVE_* environment variables, a .env
file and .synchive/config.yml, in that order of precedence.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"synchive version {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command")

    sync = subparsers.add_parser(
        "sync", help="Synchronise SOURCE into DEST"
    )
    sync.add_argument("source", help="Source directory (never modified)")
    sync.add_argument("destination", help="Destination directory")
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan, hash and plan, but change nothing",
    )
    sync.add_argument(
        "--embed",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Embed the checksum in destination filenames",
    )
    sync.add_argument(
        "--delimiters",
        help='Recognised delimiter pairs, e.g. "[], (), {}"',
    )
    sync.add_argument(
        "--synthesis-delimiter",
        help='Delimiter pair used when embedding, e.g. "[]"',
    )
    sync.add_argument(
        "--scan-without-delimiters",
        action="store_true",
        default=None,
        help="Also recognise a bare 8-hex-digit token ending the name",
    )
    sync.add_argument(
        "--extensions",
        help='Extensions eligible for embedding, e.g. ".mkv, .mp4" '
        "(default: all)",
    )
    sync.add_argument(
        "--trust-filename-checksums",
        action="store_true",
        default=None,
        help="Skip hashing files whose embedded checksums already agree",
    )
    sync.add_argument(
        "--workers",
        type=int,
        help="Number of hashing threads (1-32)",
    )
    sync.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON",
    )
    _add_logging_arguments(sync)

    extensions = subparsers.add_parser(
        "extensions", help="List file extensions found under ROOT"
    )
    extensions.add_argument("root", help="Directory to scan")

    init = subparsers.add_parser(
        "init-config", help="Create a starter .synchive/config.yml"
    )
    init.add_argument(
        "--path",
        help="Where to write the file (default: ./.synchive/config.yml)",
    )
    return parser


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also append log output here")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log record format (default: text)",
    )


def _load_unified_config() -> UnifiedConfig:
    try:
        return build_config(load_hierarchical_config())
    except (yaml.YAMLError, ValidationError, OSError) as exc:
        raise ConfigurationError(f"Invalid config file: {exc}") from exc


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "embed_checksum_in_filename": args.embed,
        "recognized_delimiters": args.delimiters,
        "synthesis_delimiter": args.synthesis_delimiter,
        "scan_without_delimiters": args.scan_without_delimiters,
        "extension_filter": args.extensions,
        "trust_filename_checksums": args.trust_filename_checksums,
        "max_workers": args.workers,
    }


def _wait(worker: SyncWorker, events: QueueListener) -> SyncReport:
    """Pump queued events until the worker finishes and return its report.

    Ctrl-C at any point of the loop cancels the run; the loop then keeps
    pumping until the worker has stopped.
    """
    sink = LoggingListener()
    cancelling = False
    while True:
        try:
            finished = not worker.is_alive()
            if not finished:
                worker.join(_POLL_SECONDS)
            for kind, payload in events.drain():
                getattr(sink, f"on_{kind}")(payload)
            if finished:
                return worker.join()
        except KeyboardInterrupt:
            if not cancelling:
                print("\nCancelling after the current file...", file=sys.stderr)
                worker.cancel()
                cancelling = True


def run_sync(args: argparse.Namespace) -> int:
    unified = _load_unified_config()
    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format or unified.logging.format,
        level=unified.logging.level,
    )
    config = load_run_configuration(_cli_overrides(args), unified.sync)

    events = QueueListener()
    engine = SyncEngine(args.source, args.destination, config, events)
    worker = SyncWorker(engine, dry_run=args.dry_run)
    worker.start()
    report = _wait(worker, events)

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))
    return _EXIT_CODES[report.status]


def run_extensions(args: argparse.Namespace) -> int:
    root = Path(args.root).expanduser()
    if not root.is_dir():
        raise ConfigurationError(f"Not a directory: {root}")
    for ext in sorted(collect_extensions(root)):
        print(ext)
    return EXIT_OK


def run_init_config(args: argparse.Namespace) -> int:
    path = ensure_config(Path(args.path) if args.path else None)
    print(path)
    return EXIT_OK


_COMMANDS = {
    "sync": run_sync,
    "extensions": run_extensions,
    "init-config": run_init_config,
}


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``synchive`` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_CONFIG

    load_dotenv()
    try:
        return _COMMANDS[args.command](args)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
