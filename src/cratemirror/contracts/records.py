"""
Index record contract.

One line of the crates.io index is one JSON document describing a single
published crate version:

    {"name":"foo","vers":"1.0.0","deps":[],"cksum":"ab12...","features":{},"yanked":false}

Only the fields the mirror needs are modelled; everything else is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

_CRATE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SHA256_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


class CrateVersionRecord(BaseModel):
    """
    A single crate version listed in the index.

    Attributes:
        name: Crate name (index key, never contains "/").
        version: Version string, opaque to the mirror.
        checksum: SHA256 hex digest of the .crate artifact.
        yanked: Whether the version was yanked upstream.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(..., min_length=1, description="Crate name")
    version: str = Field(..., min_length=1, alias="vers", description="Crate version")
    checksum: str = Field(..., alias="cksum", description="SHA256 of the artifact")
    yanked: bool = Field(default=False, description="Yanked upstream")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Crate names are restricted to a path-safe alphabet."""
        if not _CRATE_NAME_RE.match(v):
            msg = f"Invalid crate name: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Versions must be usable as a single path segment."""
        if "/" in v or "\\" in v or v in (".", ".."):
            msg = f"Invalid crate version: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("checksum")
    @classmethod
    def validate_checksum(cls, v: str) -> str:
        """Normalize to lowercase and require a full SHA256 hex digest."""
        v = v.strip().lower()
        if not _SHA256_HEX_RE.match(v):
            msg = f"Invalid sha256 checksum: {v!r}"
            raise ValueError(msg)
        return v

    @property
    def key(self) -> tuple[str, str]:
        """Unique identity of the record within the index."""
        return (self.name, self.version)

    @property
    def download_path(self) -> str:
        """
        Relative artifact path.

        Used both as the path below the upstream download base and as the
        path below the local store root, so the store can be served as-is.
        """
        return f"{self.name}/{self.version}/download"

    @property
    def display_name(self) -> str:
        """Human readable identifier, e.g. ``foo@1.0.0``."""
        return f"{self.name}@{self.version}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to an index-shaped dictionary."""
        return {
            "name": self.name,
            "vers": self.version,
            "cksum": self.checksum,
            "yanked": self.yanked,
        }

    @classmethod
    def from_index_line(cls, line: bytes | str) -> CrateVersionRecord:
        """Parse a single index line."""
        if isinstance(line, str):
            line = line.encode()
        return cls.model_validate(orjson.loads(line))


class IndexErrorKind(str, Enum):
    """Classification of an unusable index entry."""

    MALFORMED = "malformed"  # not JSON, or fails record validation
    CONFLICTING_DUPLICATE = "conflicting_duplicate"  # same key, different checksum


@dataclass(frozen=True)
class IndexEntryError:
    """
    An index entry that could not be turned into a record.

    Entry errors are values, not exceptions: the scan continues past them
    and the coordinator counts them in the run summary.

    Attributes:
        path: Index file containing the entry.
        line_no: 1-based line number within the file.
        message: Parse or validation failure description.
        kind: Error classification.
    """

    path: Path
    line_no: int
    message: str
    kind: IndexErrorKind = IndexErrorKind.MALFORMED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": str(self.path),
            "line_no": self.line_no,
            "message": self.message,
            "kind": self.kind.value,
        }
