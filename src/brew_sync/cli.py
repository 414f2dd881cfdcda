"""Command-line interface for brew-sync.

Subcommands:

- ``sync``   -- run a sync pass (``--dry-run`` previews only).
- ``plan``   -- show what a sync pass would do.
- ``status`` -- summarise the local baseline.
- ``reset``  -- forget the local baseline (next pass bootstraps).
- ``init``   -- write a starter config file.
- ``backups`` -- list or restore remote backups of a document.

Exit codes: 0 success, 1 failure, 2 success with unresolved conflicts.
"""

import argparse
import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import RemoteConfig
from .config_loader import (
    CONFIG_ENV_VAR,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import (
    UnifiedConfig,
    build_config,
    to_remote_config,
    to_sync_options,
)
from .exceptions import SyncError
from .local import DirectoryRecordSource, FileDocumentStore
from .logger import setup_logging
from .storage import create_remote_store
from .sync import (
    ConflictStrategy,
    SyncDirection,
    SyncOptions,
    SyncProgress,
    SyncResult,
    SyncSession,
    format_dry_run_preview,
    format_status,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFLICTS = 2


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in ConflictStrategy],
        help="Conflict strategy (default: from config, else manual)",
    )
    parser.add_argument(
        "--direction",
        choices=[d.value for d in SyncDirection],
        help="full (default), upload (remote mirrors local)"
        " or download (local mirrors remote)",
    )
    parser.add_argument(
        "--include",
        action="append",
        metavar="GLOB",
        help="Only sync document ids matching GLOB (repeatable)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        metavar="GLOB",
        help="Never sync document ids matching GLOB (repeatable)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brew-sync",
        description="Sync coffee-bean and brewing-log documents with a WebDAV or S3 store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview, then sync with the configured remote
  brew-sync plan
  brew-sync sync

  # Let the most recently modified side win conflicts
  brew-sync sync --strategy newest-wins

  # Only sync beans, machine-readable output
  brew-sync --json sync --include 'beans*.json'

  # Overwrite the remote with this device's documents
  brew-sync sync --direction upload

  # Bring back the newest remote backup of a document
  brew-sync backups restore beans.json

  # Start over (next sync compares both sides from scratch)
  brew-sync reset
        """,
    )
    parser.add_argument(
        "--config", help=f"Config file path (overrides {CONFIG_ENV_VAR})"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--json", action="store_true", help="Print results as JSON"
    )
    parser.add_argument(
        "--backend", choices=["webdav", "s3"], help="Remote backend"
    )
    parser.add_argument("--url", help="WebDAV server URL")
    parser.add_argument("--username", help="WebDAV username")
    parser.add_argument(
        "--password",
        help="WebDAV password"
        " (visible in process list -- prefer BREW_SYNC_PASSWORD env var)",
    )
    parser.add_argument("--bucket", help="S3 bucket")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument("--local-root", help="Directory holding documents")
    parser.add_argument("--state-dir", help="Directory for sync state")
    parser.add_argument(
        "--version",
        action="version",
        version=f"brew-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sync_parser = sub.add_parser("sync", help="Run a sync pass")
    _add_filter_args(sync_parser)
    sync_parser.add_argument(
        "--dry-run", action="store_true", help="Plan only, change nothing"
    )
    sync_parser.add_argument(
        "--workers",
        type=int,
        help="Concurrent remote operations (1-16)",
    )
    sync_parser.add_argument(
        "--resolve-delete-conflicts",
        action="store_true",
        default=None,
        help="Let the strategy resolve delete-vs-edit conflicts too",
    )
    sync_parser.add_argument(
        "--max-backups",
        type=int,
        help="Remote backups kept per uploaded document (0 disables)",
    )

    plan_parser = sub.add_parser("plan", help="Show what sync would do")
    _add_filter_args(plan_parser)

    sub.add_parser("status", help="Show the local sync baseline")
    sub.add_parser("reset", help="Forget the local sync baseline")
    sub.add_parser("init", help="Write a starter config file")

    backups_parser = sub.add_parser(
        "backups", help="List or restore remote backups of a document"
    )
    backups_sub = backups_parser.add_subparsers(
        dest="backups_command", required=True
    )
    list_parser = backups_sub.add_parser("list", help="List backups")
    list_parser.add_argument("path", help="Document id, e.g. beans.json")
    restore_parser = backups_sub.add_parser(
        "restore", help="Overwrite the local document with a backup"
    )
    restore_parser.add_argument("path", help="Document id, e.g. beans.json")
    restore_parser.add_argument(
        "--key", help="Backup key from 'backups list' (default: newest)"
    )
    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _remote_overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "backend": args.backend,
        "url": args.url,
        "username": args.username,
        "password": args.password,
        "bucket": args.bucket,
    }
    if args.insecure:
        overrides["insecure"] = True
    return {k: v for k, v in overrides.items() if v is not None}


def _sync_overrides(args: argparse.Namespace) -> dict:
    return {
        "conflict_strategy": getattr(args, "strategy", None),
        "direction": getattr(args, "direction", None),
        "include": getattr(args, "include", None),
        "exclude": getattr(args, "exclude", None),
        "dry_run": getattr(args, "dry_run", None),
        "max_workers": getattr(args, "workers", None),
        "max_backups": getattr(args, "max_backups", None),
        "resolve_delete_conflicts": getattr(
            args, "resolve_delete_conflicts", None
        ),
    }


def build_session(
    unified: UnifiedConfig,
    remote_config: RemoteConfig,
    args: argparse.Namespace,
) -> SyncSession:
    """Create the ``SyncSession`` described by config and CLI args."""
    section = unified.sync
    local_root = Path(args.local_root or section.local_root)
    state_dir = Path(args.state_dir or section.state_dir)

    on_progress = None if args.json else _print_progress
    return SyncSession(
        remote=create_remote_store(remote_config),
        records=DirectoryRecordSource(local_root, tuple(section.patterns)),
        documents=FileDocumentStore(state_dir),
        on_progress=on_progress,
        ignored_fields=section.ignore_fields,
    )


def _print_progress(progress: SyncProgress) -> None:
    if progress.total and progress.current_path:
        _stderr_print(
            f"[{progress.percentage:3d}%] {progress.message}"
        )


def run_with_cancel(
    session: SyncSession, options: SyncOptions
) -> SyncResult:
    """Run ``session.sync`` in a worker thread; Ctrl+C cancels cleanly.

    The first interrupt sets the cancel event, so actions that have not
    started are skipped and metadata is still written for finished ones.
    """
    cancel_event = threading.Event()
    outcome: dict = {}

    def _target() -> None:
        try:
            outcome["result"] = session.sync(options, cancel_event)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=_target, name="brew-sync-pass")
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        _stderr_print("\nCancelling after in-flight transfers finish...")
        cancel_event.set()
        worker.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _emit(args: argparse.Namespace, result: SyncResult) -> int:
    if args.json:
        print(json.dumps(report_to_json(result), indent=2))
    elif result.dry_run:
        print(format_dry_run_preview(result))
    else:
        print(format_sync_report(result))

    if not result.success:
        return EXIT_FAILURE
    if result.conflicts:
        return EXIT_CONFLICTS
    return EXIT_OK


def _run_backups(args: argparse.Namespace, session: SyncSession) -> int:
    if args.backups_command == "list":
        backups = session.list_backups(args.path)
        if args.json:
            print(
                json.dumps(
                    [
                        {"key": b.key, "timestamp": b.timestamp}
                        for b in backups
                    ],
                    indent=2,
                )
            )
        elif not backups:
            print(f"No backups of {args.path}")
        else:
            for backup in reversed(backups):
                stamp = datetime.fromtimestamp(
                    backup.timestamp / 1000, tz=timezone.utc
                )
                print(f"{stamp:%Y-%m-%d %H:%M:%S} UTC  {backup.key}")
        return EXIT_OK

    key = session.restore_backup(args.path, args.key)
    print(f"Restored {args.path} from {key}; the next sync uploads it.")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command and return the exit code."""
    args = build_parser().parse_args(argv)

    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()
    if args.config:
        os.environ[CONFIG_ENV_VAR] = args.config

    try:
        unified = build_config(load_hierarchical_config())
    except (OSError, ValueError) as exc:
        _stderr_print(f"Configuration error: {exc}")
        return EXIT_FAILURE

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        level=unified.logging.level,
    )

    if args.command == "init":
        path = ensure_config()
        print(f"Config file: {path}")
        return EXIT_OK

    try:
        remote_config = to_remote_config(unified, _remote_overrides(args))
        options = to_sync_options(unified, _sync_overrides(args))
    except ValueError as exc:
        _stderr_print(f"Configuration error: {exc}")
        return EXIT_FAILURE

    session = build_session(unified, remote_config, args)

    try:
        if args.command == "status":
            status = session.status()
            if args.json:
                print(json.dumps(status, indent=2))
            else:
                print(format_status(status))
            return EXIT_OK

        if args.command == "reset":
            session.reset()
            print("Local sync baseline cleared; next sync will bootstrap.")
            return EXIT_OK

        if args.command == "plan":
            return _emit(args, session.plan(options))

        if args.command == "backups":
            return _run_backups(args, session)

        return _emit(args, run_with_cancel(session, options))
    except (SyncError, LookupError) as exc:
        logger.debug("Command failed", exc_info=True)
        _stderr_print(f"Error: {exc}")
        return EXIT_FAILURE


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    run()
