"""
Prometheus metrics for sync runs.

Low-cardinality only: outcomes are labelled by kind, never by crate name
or version. Sync runs are usually short-lived cron jobs, so the registry
is written to a file for the node_exporter textfile collector rather than
served over HTTP.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, write_to_textfile
from prometheus_client.registry import CollectorRegistry

from cratemirror.contracts.results import SkipReason, SyncOutcome

if TYPE_CHECKING:
    from pathlib import Path

    from cratemirror.contracts.results import RunSummary, SyncResult


def outcome_label(result: SyncResult) -> str:
    """Metric label for a result: the outcome, or ``skipped_<reason>``."""
    if result.outcome == SyncOutcome.SKIPPED and result.skip_reason is not None:
        if result.skip_reason in (SkipReason.ALREADY_PRESENT, SkipReason.VERIFIED_PRESENT):
            return "skipped_present"
        return f"skipped_{result.skip_reason.value}"
    return result.outcome.value


class SyncMetricsExporter:
    """
    Prometheus exporter for the sync coordinator.

    Metrics:
    - cratemirror_sync_results_total{outcome}: per-record outcomes
    - cratemirror_sync_bytes_downloaded_total: bytes written to the store
    - cratemirror_sync_index_errors_total: unusable index entries
    - cratemirror_sync_in_flight: fetch/verify units currently running
    - cratemirror_sync_last_run_*: timestamp, duration, success of last run

    Usage:
        registry = CollectorRegistry()
        exporter = SyncMetricsExporter(registry=registry)
        exporter.record_result(result)
        exporter.record_run(summary)
        exporter.write_textfile(path)
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a private one is created.
        """
        self._registry = registry or CollectorRegistry()

        self._results = Counter(
            "cratemirror_sync_results",
            "Per-record sync outcomes",
            ["outcome"],
            registry=self._registry,
        )
        self._bytes_downloaded = Counter(
            "cratemirror_sync_bytes_downloaded",
            "Bytes of verified artifacts written to the store",
            registry=self._registry,
        )
        self._index_errors = Counter(
            "cratemirror_sync_index_errors",
            "Index entries skipped as malformed or conflicting",
            registry=self._registry,
        )
        self._in_flight = Gauge(
            "cratemirror_sync_in_flight",
            "Fetch/verify units currently running",
            registry=self._registry,
        )
        self._last_run_timestamp = Gauge(
            "cratemirror_sync_last_run_timestamp_seconds",
            "Unix time the last sync run finished",
            registry=self._registry,
        )
        self._last_run_duration = Gauge(
            "cratemirror_sync_last_run_duration_seconds",
            "Wall-clock duration of the last sync run",
            registry=self._registry,
        )
        self._last_run_success = Gauge(
            "cratemirror_sync_last_run_success",
            "1 if the last sync run completed without hard failures, else 0",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def record_result(self, result: SyncResult) -> None:
        self._results.labels(outcome=outcome_label(result)).inc()
        if result.size_bytes > 0:
            self._bytes_downloaded.inc(result.size_bytes)

    def record_index_error(self) -> None:
        self._index_errors.inc()

    def inc_in_flight(self) -> None:
        self._in_flight.inc()

    def dec_in_flight(self) -> None:
        self._in_flight.dec()

    def record_run(self, summary: RunSummary) -> None:
        self._last_run_timestamp.set(summary.finished_at)
        self._last_run_duration.set(summary.duration_s)
        self._last_run_success.set(1 if summary.exit_code == 0 else 0)

    def write_textfile(self, path: Path) -> None:
        """Write the registry in text exposition format (atomic rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self._registry)
