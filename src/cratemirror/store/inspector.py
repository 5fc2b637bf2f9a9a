"""
Local store inspection.

Decides, per index record, whether the artifact must be (re-)downloaded:

| condition                                        | result                  |
|--------------------------------------------------|-------------------------|
| yanked and yanked crates not included            | Skip(yanked)            |
| crate or crate version excluded                  | Skip(excluded)          |
| artifact absent                                  | Fetch                   |
| present, checksum check disabled                 | Skip(already present)   |
| present, checksum check enabled, digest matches  | Skip(verified present)  |
| present, checksum check enabled, digest differs  | Fetch (stale/corrupt)   |

Hashing an existing artifact is blocking disk I/O; async callers should
run ``needs_fetch`` in a worker thread.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from cratemirror.contracts.results import SkipReason
from cratemirror.store.verifier import compute_file_sha256

if TYPE_CHECKING:
    from pathlib import Path

    from cratemirror.contracts.records import CrateVersionRecord

logger = logging.getLogger(__name__)


class InspectAction(str, Enum):
    """What the coordinator should do with a record."""

    SKIP = "skip"
    FETCH = "fetch"


@dataclass(frozen=True)
class InspectionDecision:
    """
    Result of inspecting one record against the store.

    Attributes:
        action: SKIP or FETCH.
        path: Final artifact path in the store.
        reason: Skip reason (SKIP only).
        present: Whether a file existed at ``path``.
        digest_mismatch: Present but failed the checksum check.
    """

    action: InspectAction
    path: Path
    reason: SkipReason | None = None
    present: bool = False
    digest_mismatch: bool = False

    def __post_init__(self) -> None:
        if (self.action == InspectAction.SKIP) != (self.reason is not None):
            msg = f"{self.action.value} decision with reason {self.reason}"
            raise ValueError(msg)

    @property
    def should_fetch(self) -> bool:
        return self.action == InspectAction.FETCH


def parse_exclude_specs(specs: Iterable[str]) -> tuple[frozenset[str], frozenset[tuple[str, str]]]:
    """Split exclude entries into whole-crate names and ``name@version`` pairs.

    Raises:
        ValueError: On an empty entry or an entry with an empty side.
    """
    names: set[str] = set()
    versions: set[tuple[str, str]] = set()
    for raw in specs:
        spec = raw.strip()
        if not spec:
            msg = "Exclude entry must not be empty"
            raise ValueError(msg)
        if "@" in spec:
            name, _, version = spec.partition("@")
            if not name or not version:
                msg = f"Invalid exclude entry: {raw!r} (expected NAME or NAME@VERSION)"
                raise ValueError(msg)
            versions.add((name, version))
        else:
            names.add(spec)
    return frozenset(names), frozenset(versions)


class StoreInspector:
    """Compare index records against the artifacts already on disk."""

    def __init__(
        self,
        store_root: Path,
        *,
        include_yanked: bool = False,
        checksum_check: bool = True,
        exclude: Iterable[str] = (),
    ) -> None:
        """
        Initialize the inspector.

        Args:
            store_root: Root directory of the artifact store.
            include_yanked: Mirror yanked versions too.
            checksum_check: Hash present artifacts instead of trusting them.
            exclude: ``NAME`` or ``NAME@VERSION`` entries never to mirror.
        """
        self._store_root = store_root
        self._include_yanked = include_yanked
        self._checksum_check = checksum_check
        self._excluded_names, self._excluded_versions = parse_exclude_specs(exclude)

    @property
    def store_root(self) -> Path:
        return self._store_root

    @property
    def checksum_check(self) -> bool:
        return self._checksum_check

    def artifact_path(self, record: CrateVersionRecord) -> Path:
        """Deterministic, collision-free store path for a record."""
        return self._store_root / record.download_path

    def is_excluded(self, record: CrateVersionRecord) -> bool:
        return record.name in self._excluded_names or record.key in self._excluded_versions

    def needs_fetch(self, record: CrateVersionRecord) -> InspectionDecision:
        """Apply the decision table to one record."""
        path = self.artifact_path(record)

        if record.yanked and not self._include_yanked:
            return InspectionDecision(InspectAction.SKIP, path, reason=SkipReason.YANKED)

        if self.is_excluded(record):
            return InspectionDecision(InspectAction.SKIP, path, reason=SkipReason.EXCLUDED)

        if not path.is_file():
            return InspectionDecision(InspectAction.FETCH, path)

        if not self._checksum_check:
            return InspectionDecision(
                InspectAction.SKIP, path, reason=SkipReason.ALREADY_PRESENT, present=True
            )

        actual = compute_file_sha256(path)
        if actual == record.checksum:
            return InspectionDecision(
                InspectAction.SKIP, path, reason=SkipReason.VERIFIED_PRESENT, present=True
            )

        logger.warning(
            "Checksum mismatch in store, will re-download",
            extra={
                "crate": record.display_name,
                "expected": record.checksum,
                "actual": actual,
            },
        )
        return InspectionDecision(InspectAction.FETCH, path, present=True, digest_mismatch=True)
