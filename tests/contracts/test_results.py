"""Tests for SyncResult and RunSummary aggregation."""

from __future__ import annotations

from pathlib import Path

from cratemirror.contracts.records import CrateVersionRecord, IndexEntryError
from cratemirror.contracts.results import RunSummary, SkipReason, SyncOutcome, SyncResult

RECORD = CrateVersionRecord(name="foo", version="1.0.0", checksum="a" * 64)


class TestSyncResult:
    """Tests for SyncResult constructors."""

    def test_skipped(self) -> None:
        result = SyncResult.skipped(RECORD, SkipReason.YANKED)
        assert result.outcome == SyncOutcome.SKIPPED
        assert result.skip_reason == SkipReason.YANKED
        assert not result.is_hard_failure

    def test_fetched(self) -> None:
        result = SyncResult.fetched(RECORD, size_bytes=100, attempts=2)
        assert result.outcome == SyncOutcome.FETCHED
        assert result.size_bytes == 100
        assert result.attempts == 2
        assert not result.is_hard_failure

    def test_failures_are_hard(self) -> None:
        assert SyncResult.fetch_failed(RECORD, "404").is_hard_failure
        assert SyncResult.verify_failed(RECORD, "mismatch").is_hard_failure

    def test_to_dict(self) -> None:
        d = SyncResult.fetch_failed(RECORD, "HTTP 404", attempts=1).to_dict()
        assert d["name"] == "foo"
        assert d["outcome"] == "fetch_failed"
        assert d["skip_reason"] is None
        assert d["error"] == "HTTP 404"


class TestRunSummary:
    """Tests for RunSummary counters and exit code."""

    def test_empty_summary_is_clean(self) -> None:
        summary = RunSummary()
        assert summary.processed == 0
        assert summary.exit_code == 0
        assert summary.all_present

    def test_add_counts_each_outcome(self) -> None:
        summary = RunSummary()
        summary.add(SyncResult.fetched(RECORD, size_bytes=10))
        summary.add(SyncResult.fetched(RECORD, size_bytes=5))
        summary.add(SyncResult.skipped(RECORD, SkipReason.YANKED))
        summary.add(SyncResult.skipped(RECORD, SkipReason.EXCLUDED))
        summary.add(SyncResult.skipped(RECORD, SkipReason.ALREADY_PRESENT))
        summary.add(SyncResult.skipped(RECORD, SkipReason.VERIFIED_PRESENT))
        summary.add(SyncResult.verified_ok(RECORD))

        assert summary.counts() == {
            "fetched": 2,
            "skipped_present": 2,
            "skipped_yanked": 1,
            "skipped_excluded": 1,
            "verified_ok": 1,
            "verify_failed": 0,
            "fetch_failed": 0,
            "index_errors": 0,
        }
        assert summary.bytes_downloaded == 15
        assert summary.processed == 7
        assert summary.exit_code == 0

    def test_hard_failure_sets_exit_code(self) -> None:
        summary = RunSummary()
        summary.add(SyncResult.fetch_failed(RECORD, "HTTP 404"))
        assert summary.fetch_failed == 1
        assert len(summary.failures) == 1
        assert summary.exit_code == 1
        assert not summary.all_present

    def test_index_error_sets_exit_code(self) -> None:
        summary = RunSummary()
        summary.add_index_error(IndexEntryError(Path("x"), 1, "bad"))
        assert summary.counts()["index_errors"] == 1
        assert summary.exit_code == 1

    def test_incomplete_sets_exit_code(self) -> None:
        summary = RunSummary(incomplete=True)
        assert summary.exit_code == 1

    def test_config_error_sets_exit_code(self) -> None:
        """A failed rewrite fails the run without touching sync counts."""
        summary = RunSummary()
        summary.add(SyncResult.fetched(RECORD, size_bytes=1))
        summary.config_error = "missing"
        assert summary.fetched == 1
        assert summary.exit_code == 1

    def test_duration_never_negative(self) -> None:
        assert RunSummary(started_at=10.0, finished_at=5.0).duration_s == 0.0
        assert RunSummary(started_at=10.0, finished_at=12.5).duration_s == 2.5

    def test_to_dict(self) -> None:
        summary = RunSummary(started_at=1.0, finished_at=3.0)
        summary.add(SyncResult.verify_failed(RECORD, "mismatch"))
        d = summary.to_dict()
        assert d["counts"]["verify_failed"] == 1
        assert d["failures"][0]["outcome"] == "verify_failed"
        assert d["duration_s"] == 2.0
        assert d["exit_code"] == 1
        assert d["all_present"] is False

    def test_to_dict_reports_all_present(self) -> None:
        summary = RunSummary()
        summary.add(SyncResult.fetched(RECORD, size_bytes=10))
        assert summary.to_dict()["all_present"] is True
