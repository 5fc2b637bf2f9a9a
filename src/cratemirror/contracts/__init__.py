"""Data contracts shared between the index, store, fetch and sync layers."""

from cratemirror.contracts.records import (
    CrateVersionRecord,
    IndexEntryError,
    IndexErrorKind,
)
from cratemirror.contracts.results import (
    HARD_FAILURES,
    RunSummary,
    SkipReason,
    SyncOutcome,
    SyncResult,
)

__all__ = [
    "HARD_FAILURES",
    "CrateVersionRecord",
    "IndexEntryError",
    "IndexErrorKind",
    "RunSummary",
    "SkipReason",
    "SyncOutcome",
    "SyncResult",
]
