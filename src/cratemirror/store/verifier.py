"""
Artifact integrity checks.

The index records a SHA256 digest for every .crate file. Files are hashed
in fixed-size chunks so that large artifacts are never loaded whole.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

CHUNK_SIZE = 64 * 1024


def compute_file_sha256(filepath: Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        filepath: Path to file.

    Returns:
        Hex-encoded SHA256 hash (64 chars).

    Raises:
        FileNotFoundError: If file doesn't exist.
    """
    hasher = hashlib.sha256()
    with filepath.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify(filepath: Path, expected_sha256: str) -> bool:
    """Check that a file hashes to the expected digest.

    Comparison is case-insensitive. A missing file never verifies.
    """
    try:
        actual = compute_file_sha256(filepath)
    except FileNotFoundError:
        return False
    return actual == expected_sha256.strip().lower()
