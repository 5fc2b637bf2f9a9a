"""
Index reader.

The crates.io index is a directory tree of newline-delimited JSON files,
one file per crate, one line per published version:

    index/
        config.json          registry config (not a crate file)
        .git/                skipped
        1/a
        2/ab
        3/a/abc
        se/rd/serde

Files are walked in sorted order at every level so the record sequence is
deterministic for a given index state. Bad lines are yielded as
IndexEntryError values and the scan continues.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import orjson
from pydantic import ValidationError

from cratemirror.contracts.records import CrateVersionRecord, IndexEntryError, IndexErrorKind
from cratemirror.errors import IndexMissingError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "record"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class IndexReader:
    """Lazy, restartable reader over a local index checkout."""

    def __init__(self, index_dir: Path) -> None:
        """
        Initialize reader.

        Args:
            index_dir: Root of the index checkout.
        """
        self._index_dir = index_dir

    @property
    def index_dir(self) -> Path:
        return self._index_dir

    @property
    def config_path(self) -> Path:
        return self._index_dir / CONFIG_FILENAME

    def iter_files(self) -> Iterator[Path]:
        """Yield crate files in deterministic order.

        Raises:
            IndexMissingError: If the index directory does not exist.
        """
        if not self._index_dir.is_dir():
            msg = f"Index directory not found: {self._index_dir}"
            raise IndexMissingError(msg)
        yield from self._walk(self._index_dir, top_level=True)

    def _walk(self, directory: Path, *, top_level: bool) -> Iterator[Path]:
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if entry.name.startswith("."):
                continue
            if top_level and entry.name == CONFIG_FILENAME:
                continue
            if entry.is_dir():
                yield from self._walk(entry, top_level=False)
            elif entry.is_file():
                yield entry

    def iter_entries(self) -> Iterator[CrateVersionRecord | IndexEntryError]:
        """
        Yield every record, or an entry error for every unusable line.

        A key repeated with the same checksum is yielded once. A key whose
        lines disagree on the checksum is index corruption: every line of
        it is reported and none is yielded. Duplicates are settled per
        file, the only place a key can repeat since the file path is
        derived from the crate name. Only the current file is held in
        memory, never the keys of files already scanned.
        """
        for path in self.iter_files():
            yield from self._iter_file(path)

    def iter_records(self) -> Iterator[CrateVersionRecord]:
        """Yield only the valid records, logging and dropping entry errors."""
        for entry in self.iter_entries():
            if isinstance(entry, IndexEntryError):
                logger.warning(
                    "Skipping bad index entry",
                    extra={"file": str(entry.path), "line_no": entry.line_no, "error": entry.message},
                )
                continue
            yield entry

    def _parse_file(self, path: Path) -> Iterator[tuple[int, CrateVersionRecord | IndexEntryError]]:
        with path.open("rb") as f:
            for line_no, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                try:
                    yield line_no, CrateVersionRecord.from_index_line(line)
                except orjson.JSONDecodeError as e:
                    yield line_no, IndexEntryError(path, line_no, f"invalid JSON: {e}")
                except ValidationError as e:
                    yield line_no, IndexEntryError(path, line_no, _validation_message(e))

    def _iter_file(self, path: Path) -> Iterator[CrateVersionRecord | IndexEntryError]:
        parsed = list(self._parse_file(path))

        checksums: dict[tuple[str, str], set[str]] = {}
        for _, entry in parsed:
            if isinstance(entry, CrateVersionRecord):
                checksums.setdefault(entry.key, set()).add(entry.checksum)

        emitted: set[tuple[str, str]] = set()
        for line_no, entry in parsed:
            if isinstance(entry, IndexEntryError):
                yield entry
                continue

            if len(checksums[entry.key]) > 1:
                yield IndexEntryError(
                    path,
                    line_no,
                    (
                        f"conflicting duplicate for {entry.display_name}: "
                        f"{len(checksums[entry.key])} different checksums in one file"
                    ),
                    kind=IndexErrorKind.CONFLICTING_DUPLICATE,
                )
            elif entry.key in emitted:
                logger.debug(
                    "Ignoring repeated index entry",
                    extra={"crate": entry.display_name, "file": str(path), "line_no": line_no},
                )
            else:
                emitted.add(entry.key)
                yield entry
