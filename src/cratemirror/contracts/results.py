"""
Sync outcome contracts.

Every record the coordinator looks at ends in exactly one SyncResult.
Results are aggregated into a RunSummary, which is the only thing the
reporting layer (CLI, metrics, summary JSON) consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cratemirror.contracts.records import CrateVersionRecord, IndexEntryError


class SyncOutcome(str, Enum):
    """Closed set of per-record outcomes."""

    SKIPPED = "skipped"
    FETCHED = "fetched"
    VERIFIED_OK = "verified_ok"  # verify-only runs
    VERIFY_FAILED = "verify_failed"
    FETCH_FAILED = "fetch_failed"


class SkipReason(str, Enum):
    """Why a record needed no fetch."""

    YANKED = "yanked"
    EXCLUDED = "excluded"
    ALREADY_PRESENT = "already_present"  # checksum check disabled
    VERIFIED_PRESENT = "verified_present"  # present and digest matches


HARD_FAILURES = frozenset({SyncOutcome.VERIFY_FAILED, SyncOutcome.FETCH_FAILED})


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of processing one index record.

    Attributes:
        name: Crate name.
        version: Crate version.
        outcome: Outcome kind.
        skip_reason: Set only for SKIPPED.
        error: Failure description for hard failures.
        attempts: Number of download attempts made.
        size_bytes: Bytes written to the store (FETCHED only).
    """

    name: str
    version: str
    outcome: SyncOutcome
    skip_reason: SkipReason | None = None
    error: str | None = None
    attempts: int = 0
    size_bytes: int = 0

    @property
    def is_hard_failure(self) -> bool:
        """Check if this result should make the run exit non-zero."""
        return self.outcome in HARD_FAILURES

    @classmethod
    def skipped(cls, record: CrateVersionRecord, reason: SkipReason) -> SyncResult:
        return cls(record.name, record.version, SyncOutcome.SKIPPED, skip_reason=reason)

    @classmethod
    def fetched(cls, record: CrateVersionRecord, size_bytes: int, attempts: int = 1) -> SyncResult:
        return cls(
            record.name,
            record.version,
            SyncOutcome.FETCHED,
            attempts=attempts,
            size_bytes=size_bytes,
        )

    @classmethod
    def verified_ok(cls, record: CrateVersionRecord) -> SyncResult:
        return cls(record.name, record.version, SyncOutcome.VERIFIED_OK)

    @classmethod
    def verify_failed(
        cls, record: CrateVersionRecord, error: str, attempts: int = 0
    ) -> SyncResult:
        return cls(
            record.name,
            record.version,
            SyncOutcome.VERIFY_FAILED,
            error=error,
            attempts=attempts,
        )

    @classmethod
    def fetch_failed(cls, record: CrateVersionRecord, error: str, attempts: int = 0) -> SyncResult:
        return cls(
            record.name,
            record.version,
            SyncOutcome.FETCH_FAILED,
            error=error,
            attempts=attempts,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "outcome": self.outcome.value,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "error": self.error,
            "attempts": self.attempts,
            "size_bytes": self.size_bytes,
        }


@dataclass
class RunSummary:
    """
    Aggregated outcome of one sync run.

    Owned by the coordinator; workers only ever call ``add`` from the
    event loop thread.
    """

    fetched: int = 0
    skipped_present: int = 0
    skipped_yanked: int = 0
    skipped_excluded: int = 0
    verified_ok: int = 0
    verify_failed: int = 0
    fetch_failed: int = 0
    bytes_downloaded: int = 0

    failures: list[SyncResult] = field(default_factory=list)
    index_errors: list[IndexEntryError] = field(default_factory=list)

    index_refreshed: bool = False
    incomplete: bool = False
    config_rewritten: bool = False
    config_error: str | None = None

    started_at: float = 0.0
    finished_at: float = 0.0

    def add(self, result: SyncResult) -> None:
        """Fold a single result into the counters."""
        if result.outcome == SyncOutcome.SKIPPED:
            if result.skip_reason == SkipReason.YANKED:
                self.skipped_yanked += 1
            elif result.skip_reason == SkipReason.EXCLUDED:
                self.skipped_excluded += 1
            else:
                self.skipped_present += 1
        elif result.outcome == SyncOutcome.FETCHED:
            self.fetched += 1
            self.bytes_downloaded += result.size_bytes
        elif result.outcome == SyncOutcome.VERIFIED_OK:
            self.verified_ok += 1
        elif result.outcome == SyncOutcome.VERIFY_FAILED:
            self.verify_failed += 1
        elif result.outcome == SyncOutcome.FETCH_FAILED:
            self.fetch_failed += 1

        if result.is_hard_failure:
            self.failures.append(result)

    def add_index_error(self, error: IndexEntryError) -> None:
        self.index_errors.append(error)

    @property
    def processed(self) -> int:
        """Total records that reached an outcome."""
        return (
            self.fetched
            + self.skipped_present
            + self.skipped_yanked
            + self.skipped_excluded
            + self.verified_ok
            + self.verify_failed
            + self.fetch_failed
        )

    @property
    def duration_s(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    @property
    def all_present(self) -> bool:
        """True when every record that should be mirrored is in the store."""
        return not self.failures and not self.incomplete

    @property
    def exit_code(self) -> int:
        """Process exit status: 0 only for a complete, failure-free run."""
        if self.failures or self.index_errors or self.incomplete or self.config_error:
            return 1
        return 0

    def counts(self) -> dict[str, int]:
        """Outcome counters, keyed the way the run summary reports them."""
        return {
            "fetched": self.fetched,
            "skipped_present": self.skipped_present,
            "skipped_yanked": self.skipped_yanked,
            "skipped_excluded": self.skipped_excluded,
            "verified_ok": self.verified_ok,
            "verify_failed": self.verify_failed,
            "fetch_failed": self.fetch_failed,
            "index_errors": len(self.index_errors),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "counts": self.counts(),
            "bytes_downloaded": self.bytes_downloaded,
            "failures": [r.to_dict() for r in self.failures],
            "index_errors": [e.to_dict() for e in self.index_errors],
            "index_refreshed": self.index_refreshed,
            "incomplete": self.incomplete,
            "all_present": self.all_present,
            "config_rewritten": self.config_rewritten,
            "config_error": self.config_error,
            "duration_s": round(self.duration_s, 3),
            "exit_code": self.exit_code,
        }
