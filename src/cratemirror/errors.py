"""
Exception hierarchy for the mirror.

Per-record failures (FetchError, VerificationMismatch) are caught by the
sync coordinator and recorded as results. Resource-level failures
(MirrorResourceError and subclasses) abort the whole run.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class MirrorError(Exception):
    """Base exception for mirror operations."""


class MirrorResourceError(MirrorError):
    """Raised when a run-wide resource (store, index) is unusable."""


class IndexMissingError(MirrorResourceError):
    """Raised when the index directory does not exist."""


class IndexRefreshError(MirrorResourceError):
    """Raised when the index repository could not be cloned or updated."""


class FetchErrorKind(str, Enum):
    """Retry classification of a fetch failure."""

    TRANSIENT = "transient"  # connection errors, timeouts, 5xx, 429
    PERMANENT = "permanent"  # 404 and other 4xx


class FetchError(MirrorError):
    """Raised when an artifact could not be downloaded."""

    def __init__(
        self,
        message: str,
        kind: FetchErrorKind = FetchErrorKind.TRANSIENT,
        status: int | None = None,
        retry_after_ms: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.attempts = attempts

    @property
    def is_transient(self) -> bool:
        """Check if the failure is eligible for retry."""
        return self.kind == FetchErrorKind.TRANSIENT


class VerificationMismatch(MirrorError):
    """Raised when downloaded bytes do not hash to the expected checksum."""

    def __init__(self, message: str, expected: str, actual: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.attempts = attempts


class ConfigErrorKind(str, Enum):
    """Failure class for registry config rewrites."""

    MISSING = "missing"
    MALFORMED = "malformed"
    WRITE_FAILED = "write_failed"


class ConfigError(MirrorError):
    """Raised when the registry config document cannot be rewritten."""

    def __init__(self, message: str, kind: ConfigErrorKind, path: Path | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.path = path
