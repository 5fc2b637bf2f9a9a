"""
Artifact fetcher.

Downloads one .crate file from the canonical upstream into the store:

1. Stream the response body to ``<final>.part`` next to the final path
   (same filesystem, so the final rename is atomic).
2. Retry transient failures with backoff; fail fast on permanent ones.
3. Verify the temp file against the index checksum.
4. Rename into place only if verification passed; otherwise delete it.

The temp file is removed on every failure path, including cancellation,
so a partial download is never visible at the final path.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import aiohttp

from cratemirror import __version__
from cratemirror.errors import FetchError, FetchErrorKind, VerificationMismatch
from cratemirror.fetch.backoff import (
    BackoffConfig,
    BackoffState,
    classify_status,
    compute_backoff_delay,
    parse_retry_after,
)
from cratemirror.store.verifier import compute_file_sha256, verify

if TYPE_CHECKING:
    import random
    from collections.abc import Callable
    from pathlib import Path

    from cratemirror.contracts.records import CrateVersionRecord

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = "https://crates.io/api/v1/crates"

# crates.io used to answer unknown crate downloads with HTTP 200 and a
# fixed error body. A download hashing to this digest is a not-found.
NOT_FOUND_BODY_SHA256 = "59d2652e67d6af1844f035488a12ecdd3c680554eff0bf982aad28814b5963a9"

PART_SUFFIX = ".part"


@dataclass
class FetcherConfig:
    """
    Configuration for artifact downloads.

    Attributes:
        upstream_url: Download base; ``{upstream_url}/{name}/{version}/download``.
        request_timeout_s: Total timeout for one download attempt.
        max_retries: Retries after the first attempt for transient errors.
        chunk_size: Read size when streaming response bodies.
        backoff: Retry backoff settings.
    """

    upstream_url: str = DEFAULT_UPSTREAM_URL
    request_timeout_s: float = 60.0
    max_retries: int = 3
    chunk_size: int = 64 * 1024
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    user_agent: str = f"crate-mirror/{__version__}"


@dataclass(frozen=True)
class LocalArtifact:
    """A verified artifact at its final store path."""

    record: CrateVersionRecord
    path: Path
    size_bytes: int
    attempts: int = 1


class ArtifactFetcher:
    """Async downloader for crate artifacts."""

    def __init__(
        self,
        store_root: Path,
        config: FetcherConfig | None = None,
        *,
        verifier: Callable[[Path, str], bool] = verify,
        session: aiohttp.ClientSession | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            store_root: Root directory of the artifact store.
            config: Download configuration.
            verifier: Checksum verifier, called in a worker thread.
            session: Externally owned session (not closed by ``close``).
            rng: Seeded Random for deterministic backoff jitter.
        """
        self._store_root = store_root
        self._config = config or FetcherConfig()
        self._verifier = verifier
        self._session = session
        self._owns_session = session is None
        self._rng = rng

    async def __aenter__(self) -> ArtifactFetcher:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    @property
    def config(self) -> FetcherConfig:
        return self._config

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self._config.user_agent},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this fetcher created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def url_for(self, record: CrateVersionRecord) -> str:
        """Upstream URL for a record. Never the mirror's replacement URL."""
        return f"{self._config.upstream_url.rstrip('/')}/{record.download_path}"

    def path_for(self, record: CrateVersionRecord) -> Path:
        return self._store_root / record.download_path

    async def fetch(self, record: CrateVersionRecord) -> LocalArtifact:
        """
        Download, verify, and atomically install one artifact.

        Returns:
            The installed artifact.

        Raises:
            FetchError: Download failed (after retries for transient errors).
            VerificationMismatch: Downloaded bytes do not match the checksum.
        """
        url = self.url_for(record)
        final_path = self.path_for(record)
        part_path = final_path.with_name(final_path.name + PART_SUFFIX)
        state = BackoffState()

        while True:
            try:
                size = await self._download(url, part_path)
                break
            except FetchError as e:
                state.record_error()
                e.attempts = state.attempt
                if not e.is_transient or state.attempt > self._config.max_retries:
                    raise
                delay_ms = compute_backoff_delay(
                    self._config.backoff, state, e.retry_after_ms, rng=self._rng
                )
                logger.warning(
                    "Download failed, retrying",
                    extra={
                        "crate": record.display_name,
                        "error": str(e),
                        "attempt": state.attempt,
                        "delay_ms": delay_ms,
                    },
                )
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)

        attempts = state.attempt + 1
        try:
            ok = await asyncio.to_thread(self._verifier, part_path, record.checksum)
            if not ok:
                actual = await asyncio.to_thread(compute_file_sha256, part_path)
                if actual == NOT_FOUND_BODY_SHA256:
                    msg = f"Upstream reports {record.display_name} as not found"
                    raise FetchError(msg, kind=FetchErrorKind.PERMANENT, attempts=attempts)
                msg = (
                    f"Checksum mismatch for {record.display_name}: "
                    f"expected {record.checksum}, downloaded file has {actual}"
                )
                raise VerificationMismatch(
                    msg, expected=record.checksum, actual=actual, attempts=attempts
                )
            os.replace(part_path, final_path)
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise

        logger.info(
            "Fetched artifact",
            extra={"crate": record.display_name, "size_bytes": size, "attempts": attempts},
        )
        return LocalArtifact(record=record, path=final_path, size_bytes=size, attempts=attempts)

    async def _download(self, url: str, part_path: Path) -> int:
        """Stream ``url`` into ``part_path``. Returns the byte count."""
        part_path.parent.mkdir(parents=True, exist_ok=True)
        session = await self._get_session()
        size = 0
        try:
            async with session.get(url) as response:
                error = classify_status(
                    response.status,
                    url,
                    parse_retry_after(response.headers.get("Retry-After")),
                )
                if error is not None:
                    raise error
                with part_path.open("wb") as f:
                    async for chunk in response.content.iter_chunked(self._config.chunk_size):
                        f.write(chunk)
                        size += len(chunk)
        except FetchError:
            part_path.unlink(missing_ok=True)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            part_path.unlink(missing_ok=True)
            msg = f"Transport error fetching {url}: {e!r}"
            raise FetchError(msg, kind=FetchErrorKind.TRANSIENT) from e
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        return size
