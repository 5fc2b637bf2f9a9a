"""Upstream artifact downloads with retry and verification."""

from cratemirror.fetch.backoff import (
    BackoffConfig,
    BackoffState,
    classify_status,
    compute_backoff_delay,
    parse_retry_after,
)
from cratemirror.fetch.fetcher import (
    DEFAULT_UPSTREAM_URL,
    NOT_FOUND_BODY_SHA256,
    ArtifactFetcher,
    FetcherConfig,
    LocalArtifact,
)

__all__ = [
    "DEFAULT_UPSTREAM_URL",
    "NOT_FOUND_BODY_SHA256",
    "ArtifactFetcher",
    "BackoffConfig",
    "BackoffState",
    "FetcherConfig",
    "LocalArtifact",
    "classify_status",
    "compute_backoff_delay",
    "parse_retry_after",
]
