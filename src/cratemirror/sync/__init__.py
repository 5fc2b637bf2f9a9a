"""Sync coordination: producer, worker pool, config rewrite."""

from cratemirror.sync.coordinator import (
    CONFIG_COMMIT_MESSAGE,
    Fetcher,
    SyncCoordinator,
    SyncState,
)

__all__ = [
    "CONFIG_COMMIT_MESSAGE",
    "Fetcher",
    "SyncCoordinator",
    "SyncState",
]
