"""Shared fixtures: on-disk index checkouts and artifact payloads."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import orjson
import pytest

from cratemirror.contracts.records import CrateVersionRecord

DEFAULT_CONFIG = b'{\n  "dl": "https://static.crates.io/crates",\n  "api": "https://crates.io"\n}\n'


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _index_relpath(name: str) -> str:
    """Path of a crate's file inside the index, per the crates.io layout."""
    lower = name.lower()
    if len(lower) <= 2:
        return f"{len(lower)}/{lower}"
    if len(lower) == 3:
        return f"3/{lower[0]}/{lower}"
    return f"{lower[0:2]}/{lower[2:4]}/{lower}"


@pytest.fixture
def sha256_hex() -> Callable[[bytes], str]:
    """SHA256 hex digest helper."""
    return _sha256


@pytest.fixture
def artifact_bytes() -> Callable[[str, str], bytes]:
    """Deterministic fake .crate payload for a name/version."""

    def _make(name: str, version: str) -> bytes:
        return f"crate:{name}:{version}:".encode() * 64

    return _make


@pytest.fixture
def make_record(
    artifact_bytes: Callable[[str, str], bytes],
) -> Callable[..., CrateVersionRecord]:
    """Build a record whose checksum matches ``artifact_bytes`` by default."""

    def _make(
        name: str = "foo",
        version: str = "1.0.0",
        *,
        yanked: bool = False,
        checksum: str | None = None,
    ) -> CrateVersionRecord:
        return CrateVersionRecord(
            name=name,
            version=version,
            checksum=checksum or _sha256(artifact_bytes(name, version)),
            yanked=yanked,
        )

    return _make


@pytest.fixture
def index_dir(tmp_path: Path) -> Path:
    """Empty index checkout with a registry config.json."""
    root = tmp_path / "archive" / "index"
    root.mkdir(parents=True)
    (root / "config.json").write_bytes(DEFAULT_CONFIG)
    return root


@pytest.fixture
def write_index(index_dir: Path) -> Callable[[list[dict[str, Any] | CrateVersionRecord]], Path]:
    """Write index lines, grouped into one file per crate name."""

    def _write(entries: list[dict[str, Any] | CrateVersionRecord]) -> Path:
        for entry in entries:
            line = entry.to_dict() if isinstance(entry, CrateVersionRecord) else entry
            path = index_dir / _index_relpath(str(line["name"]))
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("ab") as f:
                f.write(orjson.dumps(line) + b"\n")
        return index_dir

    return _write
