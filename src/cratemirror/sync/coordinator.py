"""
Sync coordinator.

Drives one mirror run:

    IDLE -> REFRESHING_INDEX -> SCANNING -> SYNCING -> REWRITING_CONFIG -> DONE

Scanning and syncing overlap: the index reader feeds a bounded queue and a
fixed pool of worker tasks inspects, fetches and verifies records as they
are discovered, so peak memory follows the pool size, not the index size.
SCANNING means the producer is still walking the index; SYNCING means the
scan is finished and the pool is draining.

Invariants:
- At most ``concurrency`` records are being inspected/fetched at once.
- One record's failure never aborts another; every record yields exactly
  one SyncResult, folded into the RunSummary by the event loop thread.
- The config rewrite runs once, after the join barrier, and always after
  the index refresh of the same run (the refresh resets config.json).
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from cratemirror.contracts.records import IndexEntryError
from cratemirror.contracts.results import RunSummary, SkipReason, SyncResult
from cratemirror.errors import (
    ConfigError,
    FetchError,
    IndexMissingError,
    IndexRefreshError,
    MirrorResourceError,
    VerificationMismatch,
)
from cratemirror.fetch.fetcher import ArtifactFetcher
from cratemirror.index.config_rewriter import rewrite_download_url
from cratemirror.index.reader import IndexReader
from cratemirror.index.refresher import GitIndexRefresher
from cratemirror.store.inspector import StoreInspector

if TYPE_CHECKING:
    from collections.abc import Callable

    from cratemirror.config import SyncSettings
    from cratemirror.contracts.records import CrateVersionRecord
    from cratemirror.fetch.fetcher import LocalArtifact
    from cratemirror.index.refresher import IndexRefresher
    from cratemirror.metrics import SyncMetricsExporter

logger = logging.getLogger(__name__)

CONFIG_COMMIT_MESSAGE = "crate-mirror updating DL location"
PROGRESS_LOG_EVERY = 10000
QUEUE_SLOTS_PER_WORKER = 2


class SyncState(str, Enum):
    """Coordinator run state."""

    IDLE = "IDLE"
    REFRESHING_INDEX = "REFRESHING_INDEX"
    SCANNING = "SCANNING"
    SYNCING = "SYNCING"
    REWRITING_CONFIG = "REWRITING_CONFIG"
    DONE = "DONE"


class Fetcher(Protocol):
    """What the coordinator needs from a fetcher."""

    async def fetch(self, record: CrateVersionRecord) -> LocalArtifact: ...

    async def close(self) -> None: ...


class SyncCoordinator:
    """
    Reconciles the local artifact store against the index.

    Collaborators default to the production implementations and can be
    injected for testing.
    """

    def __init__(
        self,
        settings: SyncSettings,
        *,
        reader: IndexReader | None = None,
        inspector: StoreInspector | None = None,
        fetcher: Fetcher | None = None,
        refresher: IndexRefresher | None = None,
        exporter: SyncMetricsExporter | None = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            settings: Run settings.
            reader: Index reader (default: over ``settings.index_path``).
            inspector: Store inspector (default: built from settings).
            fetcher: Artifact fetcher (default: aiohttp fetcher, closed after the run).
            refresher: Index refresher (default: git).
            exporter: Optional Prometheus exporter.
            time_fn: Wall clock, injectable for tests.
        """
        self._settings = settings
        self._reader = reader or IndexReader(settings.index_path)
        self._inspector = inspector or StoreInspector(
            settings.store_path,
            include_yanked=settings.include_yanked,
            checksum_check=settings.checksum_check or settings.verify_only,
            exclude=settings.exclude,
        )
        self._owns_fetcher = fetcher is None
        self._fetcher: Fetcher = fetcher or ArtifactFetcher(
            settings.store_path, settings.fetcher_config()
        )
        self._refresher: IndexRefresher = refresher or GitIndexRefresher(
            settings.index_remote_url, settings.index_branch
        )
        self._exporter = exporter
        self._time_fn = time_fn

        self._state = SyncState.IDLE
        self._shutdown = asyncio.Event()
        self._summary = RunSummary()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def summary(self) -> RunSummary:
        return self._summary

    def request_shutdown(self) -> None:
        """Stop dispatching new work; in-flight records are allowed to finish."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested, finishing in-flight downloads")
        self._shutdown.set()

    async def run(self) -> RunSummary:
        """
        Execute one full run.

        Returns:
            The run summary. Per-record failures are reported there.

        Raises:
            MirrorResourceError: Store unusable, index missing, or index
                refresh failed. Aborts the run.
        """
        summary = self._summary = RunSummary(started_at=self._time_fn())
        settings = self._settings
        try:
            self._prepare_store()

            if settings.refresh_index and not settings.verify_only:
                self._state = SyncState.REFRESHING_INDEX
                await asyncio.to_thread(self._refresher.refresh, settings.index_path)
                summary.index_refreshed = True

            if not settings.index_path.is_dir():
                msg = f"Index directory not found: {settings.index_path}"
                raise IndexMissingError(msg)

            await self._sync(summary)

            if settings.replacement_url is not None and not settings.verify_only:
                if self._shutdown.is_set():
                    summary.incomplete = True
                    logger.warning("Shutdown requested, registry config not rewritten")
                else:
                    self._state = SyncState.REWRITING_CONFIG
                    await self._rewrite_config(summary, settings.replacement_url)
        finally:
            if self._owns_fetcher:
                await self._fetcher.close()
            summary.finished_at = self._time_fn()
            self._state = SyncState.DONE

        if self._exporter is not None:
            self._exporter.record_run(summary)
        self._log_summary(summary)
        return summary

    def _prepare_store(self) -> None:
        archive_dir = self._settings.archive_dir
        if archive_dir.exists() and not archive_dir.is_dir():
            msg = f"File already exists: {archive_dir}"
            raise MirrorResourceError(msg)
        if self._settings.verify_only:
            return
        try:
            self._settings.store_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Error creating store directory {self._settings.store_path}: {e}"
            raise MirrorResourceError(msg) from e

    async def _sync(self, summary: RunSummary) -> None:
        """Producer/consumer pass; returns once every worker has drained the queue."""
        concurrency = self._settings.concurrency
        queue: asyncio.Queue[CrateVersionRecord | None] = asyncio.Queue(
            maxsize=concurrency * QUEUE_SLOTS_PER_WORKER
        )
        workers = [
            asyncio.create_task(self._worker(idx, queue, summary), name=f"sync-worker-{idx}")
            for idx in range(concurrency)
        ]
        producer = asyncio.create_task(
            self._produce(queue, summary, concurrency), name="sync-producer"
        )
        tasks = [producer, *workers]

        self._state = SyncState.SCANNING
        try:
            # First failure in the producer or any worker aborts the pass.
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            summary.incomplete = True
            raise

    async def _produce(
        self,
        queue: asyncio.Queue[CrateVersionRecord | None],
        summary: RunSummary,
        n_workers: int,
    ) -> None:
        logger.info("Reading the index", extra={"index_dir": str(self._settings.index_path)})
        for entry in self._reader.iter_entries():
            if self._shutdown.is_set():
                summary.incomplete = True
                logger.warning("Index scan stopped early")
                break
            if isinstance(entry, IndexEntryError):
                self._record_index_error(summary, entry)
                continue
            await queue.put(entry)
        else:
            logger.info("Finished reading the index")

        self._state = SyncState.SYNCING
        for _ in range(n_workers):
            await queue.put(None)

    async def _worker(
        self,
        idx: int,
        queue: asyncio.Queue[CrateVersionRecord | None],
        summary: RunSummary,
    ) -> None:
        logger.debug("Sync worker %d started", idx)
        while True:
            record = await queue.get()
            try:
                if record is None:
                    logger.debug("Sync worker %d finished", idx)
                    return
                if self._shutdown.is_set():
                    summary.incomplete = True
                    continue
                result = await self._process(record)
                self._record_result(summary, result)
            finally:
                queue.task_done()

    async def _process(self, record: CrateVersionRecord) -> SyncResult:
        """Inspect, and if needed fetch and verify, one record."""
        if self._exporter is not None:
            self._exporter.inc_in_flight()
        try:
            decision = await asyncio.to_thread(self._inspector.needs_fetch, record)

            if self._settings.verify_only:
                return self._verify_only_result(record, decision.reason, decision.present)

            if decision.reason is not None:
                return SyncResult.skipped(record, decision.reason)

            try:
                artifact = await self._fetcher.fetch(record)
            except VerificationMismatch as e:
                return SyncResult.verify_failed(record, str(e), attempts=e.attempts)
            except FetchError as e:
                return SyncResult.fetch_failed(record, str(e), attempts=e.attempts)
            return SyncResult.fetched(record, artifact.size_bytes, attempts=artifact.attempts)
        except OSError as e:
            logger.exception("Store I/O failed", extra={"crate": record.display_name})
            return SyncResult.fetch_failed(record, f"store I/O error: {e}")
        finally:
            if self._exporter is not None:
                self._exporter.dec_in_flight()

    def _verify_only_result(
        self,
        record: CrateVersionRecord,
        reason: SkipReason | None,
        present: bool,
    ) -> SyncResult:
        if reason in (SkipReason.YANKED, SkipReason.EXCLUDED):
            return SyncResult.skipped(record, reason)
        if reason == SkipReason.VERIFIED_PRESENT:
            return SyncResult.verified_ok(record)
        if present:
            return SyncResult.verify_failed(record, "checksum mismatch in store")
        return SyncResult.verify_failed(record, "artifact missing from store")

    def _record_result(self, summary: RunSummary, result: SyncResult) -> None:
        summary.add(result)
        if self._exporter is not None:
            self._exporter.record_result(result)
        if result.is_hard_failure:
            logger.error(
                "Sync failed for %s@%s: %s",
                result.name,
                result.version,
                result.error,
                extra={"outcome": result.outcome.value, "attempts": result.attempts},
            )
        if summary.processed % PROGRESS_LOG_EVERY == 0:
            logger.info("Sync progress", extra=summary.counts())

    def _record_index_error(self, summary: RunSummary, entry: IndexEntryError) -> None:
        summary.add_index_error(entry)
        if self._exporter is not None:
            self._exporter.record_index_error()
        logger.warning(
            "Skipping bad index entry",
            extra={
                "file": str(entry.path),
                "line_no": entry.line_no,
                "kind": entry.kind.value,
                "error": entry.message,
            },
        )

    async def _rewrite_config(self, summary: RunSummary, new_url: str) -> None:
        """Rewrite the download URL; failures are reported, never raised."""
        index_dir = self._settings.index_path
        try:
            changed = await asyncio.to_thread(
                rewrite_download_url, self._reader.config_path, new_url
            )
        except ConfigError as e:
            summary.config_error = str(e)
            logger.error("Registry config rewrite failed", extra={"kind": e.kind.value, "error": str(e)})
            return

        summary.config_rewritten = changed
        if not changed or not self._settings.commit_config:
            return
        if not (index_dir / ".git").exists():
            logger.info("Index is not a git checkout, not committing config")
            return
        try:
            await asyncio.to_thread(self._refresher.commit_config, index_dir, CONFIG_COMMIT_MESSAGE)
        except IndexRefreshError as e:
            summary.config_error = f"config commit failed: {e}"
            logger.error("Registry config commit failed", extra={"error": str(e)})

    def _log_summary(self, summary: RunSummary) -> None:
        logger.info("=" * 60)
        logger.info("Sync finished in %.1fs", summary.duration_s)
        for key, value in summary.counts().items():
            logger.info("  %s: %d", key, value)
        if summary.bytes_downloaded:
            logger.info("  bytes_downloaded: %d", summary.bytes_downloaded)
        if summary.incomplete:
            logger.warning("Run incomplete: stopped before every record was processed")
        if summary.config_rewritten:
            logger.info("Replaced registry download URL with %s", self._settings.replacement_url)
        logger.info("=" * 60)
