#!/usr/bin/env python3
"""
Mirror the crates.io registry into a local archive.

Refreshes the index checkout, downloads every (non-yanked) crate version
missing from the store, verifies each against the index checksum, and
optionally points the registry config at the mirror.

Usage:
    python -m scripts.run_sync /srv/crates
    python -m scripts.run_sync /srv/crates --replace https://mirror.example/crates
    python -m scripts.run_sync /srv/crates --no-update-index --no-check-sums
    python -m scripts.run_sync /srv/crates --verify-only --summary-json out.json

Exit status is 0 only when every record was mirrored or skipped, no index
entry was rejected, and the config rewrite (if requested) succeeded.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import orjson

from cratemirror import __version__
from cratemirror.config import DEFAULT_CONCURRENCY, UNAVAILABLE_CRATES, SyncSettings
from cratemirror.errors import MirrorResourceError
from cratemirror.fetch.fetcher import DEFAULT_UPSTREAM_URL
from cratemirror.index.refresher import DEFAULT_INDEX_BRANCH, DEFAULT_INDEX_REMOTE
from cratemirror.logging_config import setup_logging
from cratemirror.metrics import SyncMetricsExporter
from cratemirror.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

EXIT_RESOURCE_ERROR = 2


def setup_signal_handlers(coordinator: SyncCoordinator) -> None:
    """
    Route SIGINT/SIGTERM to a graceful stop.

    The handler only requests shutdown; the coordinator stops dispatching,
    lets in-flight downloads finish and reports the run as incomplete.
    """

    def signal_handler(sig: int, frame: object) -> None:
        logger.info("Received signal %s, initiating shutdown", signal.Signals(sig).name)
        coordinator.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_sync",
        description="Mirror crates.io into a local archive.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "archive_dir",
        type=Path,
        metavar="ARCHIVE_DIR",
        help="Mirror root (index/ and crates/ live under it)",
    )
    parser.add_argument(
        "--no-update-index",
        action="store_true",
        help="Do not fetch the latest index before syncing",
    )
    parser.add_argument(
        "--yanked",
        action="store_true",
        help="Also download yanked versions",
    )
    parser.add_argument(
        "--no-check-sums",
        action="store_true",
        help="Trust artifacts already in the store without hashing them",
    )
    parser.add_argument(
        "--replace",
        type=str,
        default=None,
        metavar="URL",
        help="After syncing, point the registry download URL at this base",
    )
    parser.add_argument(
        "--concurrency",
        "-j",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f"Maximum simultaneous downloads (default: {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--upstream",
        type=str,
        default=DEFAULT_UPSTREAM_URL,
        metavar="URL",
        help=f"Artifact download base (default: {DEFAULT_UPSTREAM_URL})",
    )
    parser.add_argument(
        "--index-remote",
        type=str,
        default=DEFAULT_INDEX_REMOTE,
        metavar="URL",
        help=f"Index git remote (default: {DEFAULT_INDEX_REMOTE})",
    )
    parser.add_argument(
        "--index-branch",
        type=str,
        default=DEFAULT_INDEX_BRANCH,
        help=f"Index branch to track (default: {DEFAULT_INDEX_BRANCH})",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="NAME[@VERSION]",
        help="Never mirror this crate or crate version (repeatable)",
    )
    parser.add_argument(
        "--no-default-excludes",
        action="store_true",
        help="Do not skip the built-in list of known-unavailable versions",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=3,
        help="Retries for transient download errors (default: 3)",
    )
    parser.add_argument(
        "--timeout-s",
        type=float,
        default=60.0,
        help="Per-request timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--no-commit",
        action="store_true",
        help="Rewrite config.json but do not commit it to the index checkout",
    )
    parser.add_argument(
        "--verify-only",
        action="store_true",
        help="Check the store against the index; no network, no writes",
    )
    parser.add_argument(
        "--summary-json",
        type=Path,
        default=None,
        help="Write the run summary as JSON to this path",
    )
    parser.add_argument(
        "--metrics-textfile",
        type=Path,
        default=None,
        help="Write Prometheus metrics in textfile-collector format to this path",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> SyncSettings:
    """Build validated settings from parsed arguments.

    Raises:
        ValueError: If any value is out of range.
    """
    exclude: tuple[str, ...] = () if args.no_default_excludes else UNAVAILABLE_CRATES
    return SyncSettings(
        archive_dir=args.archive_dir,
        include_yanked=args.yanked,
        checksum_check=not args.no_check_sums,
        refresh_index=not args.no_update_index,
        replacement_url=args.replace,
        concurrency=args.concurrency,
        upstream_url=args.upstream,
        index_remote_url=args.index_remote,
        index_branch=args.index_branch,
        request_timeout_s=args.timeout_s,
        max_retries=args.max_retries,
        exclude=exclude + tuple(args.exclude),
        commit_config=not args.no_commit,
        verify_only=args.verify_only,
        summary_json=args.summary_json,
        metrics_textfile=args.metrics_textfile,
    )


async def run_sync(settings: SyncSettings) -> int:
    """
    Run one sync and write the requested reports.

    Returns:
        Exit code (0 = complete and clean).
    """
    exporter = SyncMetricsExporter() if settings.metrics_textfile is not None else None
    coordinator = SyncCoordinator(settings, exporter=exporter)
    setup_signal_handlers(coordinator)

    try:
        summary = await coordinator.run()
    except MirrorResourceError as e:
        logger.error("Sync aborted: %s", e)
        return EXIT_RESOURCE_ERROR

    if settings.summary_json is not None:
        settings.summary_json.parent.mkdir(parents=True, exist_ok=True)
        settings.summary_json.write_bytes(
            orjson.dumps(summary.to_dict(), option=orjson.OPT_INDENT_2)
        )
        logger.info("Summary written to %s", settings.summary_json)

    if exporter is not None and settings.metrics_textfile is not None:
        exporter.write_textfile(settings.metrics_textfile)
        logger.info("Metrics written to %s", settings.metrics_textfile)

    return summary.exit_code


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.json_logs,
    )

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_RESOURCE_ERROR

    logger.info("Starting crate-mirror %s", __version__)
    logger.info("  Archive: %s", settings.archive_dir)
    logger.info("  Upstream: %s", settings.upstream_url)
    logger.info("  Concurrency: %d", settings.concurrency)
    logger.info("  Mode: %s", "verify-only" if settings.verify_only else "sync")

    return asyncio.run(run_sync(settings))


if __name__ == "__main__":
    sys.exit(main())
