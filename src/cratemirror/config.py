"""
Runtime settings for a sync run.

Archive layout:

    ARCHIVE_DIR/
        index/      git checkout of the registry index (config.json at its root)
        crates/     artifact store, ``{name}/{version}/download``

Settings are validated at construction time; an invalid value raises
ValueError naming the offending field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from cratemirror.fetch.backoff import BackoffConfig
from cratemirror.fetch.fetcher import DEFAULT_UPSTREAM_URL, FetcherConfig
from cratemirror.index.refresher import DEFAULT_INDEX_BRANCH, DEFAULT_INDEX_REMOTE
from cratemirror.store.inspector import parse_exclude_specs

INDEX_SUBDIR = "index"
STORE_SUBDIR = "crates"

DEFAULT_CONCURRENCY = 8
MAX_CONCURRENCY = 64
MAX_RETRIES_LIMIT = 10

# Listed in the index but never downloadable from upstream.
UNAVAILABLE_CRATES: tuple[str, ...] = (
    "STD@0.1.0",
    "glib-2-0-sys@0.0.1",
    "glib-2-0-sys@0.0.2",
    "glib-2-0-sys@0.0.3",
    "glib-2-0-sys@0.0.4",
    "glib-2-0-sys@0.0.5",
    "glib-2-0-sys@0.0.6",
    "glib-2-0-sys@0.0.7",
    "glib-2-0-sys@0.0.8",
    "glib-2-0-sys@0.1.0",
    "glib-2-0-sys@0.1.1",
    "glib-2-0-sys@0.1.2",
    "glib-2-0-sys@0.2.0",
    "gobject-2-0-sys@0.0.2",
    "gobject-2-0-sys@0.0.3",
    "gobject-2-0-sys@0.0.4",
    "gobject-2-0-sys@0.0.5",
    "gobject-2-0-sys@0.0.6",
    "gobject-2-0-sys@0.0.7",
    "gobject-2-0-sys@0.0.8",
    "gobject-2-0-sys@0.0.9",
    "gobject-2-0-sys@0.1.0",
    "gobject-2-0-sys@0.2.0",
    "ojfiewijogwhiogerhiugerhiuegr@0.1.0",
    "ojfiewijogwhiogerhiugerhiuegr@0.1.1",
    "ojfiewijogwhiogerhiugerhiuegr@0.1.2",
    "rustbook@0.1.0",
    "rustbook@0.2.0",
    "rustbook@0.3.0",
    "cargo-ctags@0.2.3",
    "wright@0.2.2",  # https://github.com/rust-lang/crates.io/issues/1201
)


def _is_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


@dataclass
class SyncSettings:
    """
    Settings consumed by the sync coordinator.

    Attributes:
        archive_dir: Root of the mirror on disk.
        index_dir: Index checkout (default ``archive_dir/index``).
        store_dir: Artifact store (default ``archive_dir/crates``).
        include_yanked: Also mirror yanked versions.
        checksum_check: Hash artifacts already in the store.
        refresh_index: Update the index from upstream before syncing.
        replacement_url: Rewrite the registry download URL to this after sync.
        concurrency: Maximum simultaneous fetch/verify operations.
        exclude: ``NAME`` or ``NAME@VERSION`` entries never mirrored.
        commit_config: Commit config.json after rewriting it.
        verify_only: Check the store against the index without downloading.
    """

    archive_dir: Path
    index_dir: Path | None = None
    store_dir: Path | None = None

    include_yanked: bool = False
    checksum_check: bool = True
    refresh_index: bool = True
    replacement_url: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY

    upstream_url: str = DEFAULT_UPSTREAM_URL
    index_remote_url: str = DEFAULT_INDEX_REMOTE
    index_branch: str = DEFAULT_INDEX_BRANCH
    request_timeout_s: float = 60.0
    max_retries: int = 3
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    exclude: tuple[str, ...] = UNAVAILABLE_CRATES
    commit_config: bool = True
    verify_only: bool = False

    summary_json: Path | None = None
    metrics_textfile: Path | None = None

    def __post_init__(self) -> None:
        """Resolve default paths and validate values."""
        self.archive_dir = Path(self.archive_dir)
        if self.index_dir is None:
            self.index_dir = self.archive_dir / INDEX_SUBDIR
        if self.store_dir is None:
            self.store_dir = self.archive_dir / STORE_SUBDIR

        if not 1 <= self.concurrency <= MAX_CONCURRENCY:
            msg = f"concurrency must be 1..{MAX_CONCURRENCY}, got {self.concurrency}"
            raise ValueError(msg)
        if self.request_timeout_s <= 0:
            msg = f"request_timeout_s must be > 0, got {self.request_timeout_s}"
            raise ValueError(msg)
        if not 0 <= self.max_retries <= MAX_RETRIES_LIMIT:
            msg = f"max_retries must be 0..{MAX_RETRIES_LIMIT}, got {self.max_retries}"
            raise ValueError(msg)
        if not _is_http_url(self.upstream_url):
            msg = f"upstream_url must be an http(s) URL, got {self.upstream_url!r}"
            raise ValueError(msg)
        if self.replacement_url is not None and not _is_http_url(self.replacement_url):
            msg = f"replacement_url must be an http(s) URL, got {self.replacement_url!r}"
            raise ValueError(msg)
        if not self.index_branch.strip():
            msg = "index_branch must not be empty"
            raise ValueError(msg)
        self.exclude = tuple(self.exclude)
        parse_exclude_specs(self.exclude)

    @property
    def index_path(self) -> Path:
        return self.index_dir if self.index_dir is not None else self.archive_dir / INDEX_SUBDIR

    @property
    def store_path(self) -> Path:
        return self.store_dir if self.store_dir is not None else self.archive_dir / STORE_SUBDIR

    def fetcher_config(self) -> FetcherConfig:
        return FetcherConfig(
            upstream_url=self.upstream_url,
            request_timeout_s=self.request_timeout_s,
            max_retries=self.max_retries,
            backoff=self.backoff,
        )
