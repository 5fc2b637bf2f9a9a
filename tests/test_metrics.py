"""Tests for the Prometheus sync metrics exporter."""

from __future__ import annotations

from pathlib import Path

from prometheus_client.registry import CollectorRegistry

from cratemirror.contracts.records import CrateVersionRecord
from cratemirror.contracts.results import RunSummary, SkipReason, SyncResult
from cratemirror.metrics import SyncMetricsExporter, outcome_label

RECORD = CrateVersionRecord(name="foo", version="1.0.0", checksum="a" * 64)


def _value(registry: CollectorRegistry, name: str, labels: dict[str, str] | None = None) -> float | None:
    return registry.get_sample_value(name, labels or {})


class TestOutcomeLabel:
    """Tests for outcome_label."""

    def test_labels(self) -> None:
        assert outcome_label(SyncResult.fetched(RECORD, 1)) == "fetched"
        assert outcome_label(SyncResult.fetch_failed(RECORD, "x")) == "fetch_failed"
        assert outcome_label(SyncResult.skipped(RECORD, SkipReason.YANKED)) == "skipped_yanked"
        assert outcome_label(SyncResult.skipped(RECORD, SkipReason.EXCLUDED)) == "skipped_excluded"

    def test_present_reasons_share_a_label(self) -> None:
        """Both presence skips collapse into one series, matching the summary."""
        assert outcome_label(SyncResult.skipped(RECORD, SkipReason.ALREADY_PRESENT)) == "skipped_present"
        assert outcome_label(SyncResult.skipped(RECORD, SkipReason.VERIFIED_PRESENT)) == "skipped_present"


class TestSyncMetricsExporter:
    """Tests for SyncMetricsExporter."""

    def test_record_result(self) -> None:
        registry = CollectorRegistry()
        exporter = SyncMetricsExporter(registry=registry)

        exporter.record_result(SyncResult.fetched(RECORD, size_bytes=100))
        exporter.record_result(SyncResult.fetched(RECORD, size_bytes=50))
        exporter.record_result(SyncResult.skipped(RECORD, SkipReason.YANKED))

        assert _value(registry, "cratemirror_sync_results_total", {"outcome": "fetched"}) == 2
        assert _value(registry, "cratemirror_sync_results_total", {"outcome": "skipped_yanked"}) == 1
        assert _value(registry, "cratemirror_sync_bytes_downloaded_total") == 150

    def test_index_errors_and_in_flight(self) -> None:
        exporter = SyncMetricsExporter()
        exporter.record_index_error()
        exporter.inc_in_flight()
        exporter.inc_in_flight()
        exporter.dec_in_flight()

        assert _value(exporter.registry, "cratemirror_sync_index_errors_total") == 1
        assert _value(exporter.registry, "cratemirror_sync_in_flight") == 1

    def test_record_run(self) -> None:
        exporter = SyncMetricsExporter()
        summary = RunSummary(started_at=100.0, finished_at=112.5)

        exporter.record_run(summary)
        assert _value(exporter.registry, "cratemirror_sync_last_run_timestamp_seconds") == 112.5
        assert _value(exporter.registry, "cratemirror_sync_last_run_duration_seconds") == 12.5
        assert _value(exporter.registry, "cratemirror_sync_last_run_success") == 1

        summary.incomplete = True
        exporter.record_run(summary)
        assert _value(exporter.registry, "cratemirror_sync_last_run_success") == 0

    def test_separate_registries_do_not_collide(self) -> None:
        SyncMetricsExporter()
        SyncMetricsExporter()

    def test_write_textfile(self, tmp_path: Path) -> None:
        exporter = SyncMetricsExporter()
        exporter.record_result(SyncResult.fetched(RECORD, size_bytes=7))
        path = tmp_path / "textfile" / "cratemirror.prom"

        exporter.write_textfile(path)

        text = path.read_text()
        assert 'cratemirror_sync_results_total{outcome="fetched"} 1.0' in text
        assert "cratemirror_sync_bytes_downloaded_total 7.0" in text
