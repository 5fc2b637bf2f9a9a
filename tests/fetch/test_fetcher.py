"""
Tests for ArtifactFetcher against a local aiohttp server.

The fetcher must never leave a partial or unverified file at the final
store path, whatever the failure.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter
from pathlib import Path
from unittest.mock import patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from cratemirror.contracts.records import CrateVersionRecord
from cratemirror.errors import FetchError, FetchErrorKind, VerificationMismatch
from cratemirror.fetch.backoff import BackoffConfig
from cratemirror.fetch.fetcher import PART_SUFFIX, ArtifactFetcher, FetcherConfig

PAYLOAD = b"\x1f\x8b fake crate tarball " * 1000
RECORD = CrateVersionRecord(name="foo", version="1.0.0", checksum=hashlib.sha256(PAYLOAD).hexdigest())
NO_DELAY = BackoffConfig(base_delay_ms=0, max_delay_ms=0)


class FakeUpstream:
    """Serves scripted responses per ``name/version``; the last one repeats."""

    def __init__(self) -> None:
        self.responses: dict[str, list[tuple[int, bytes, dict[str, str]]]] = {}
        self.hits: Counter[str] = Counter()

    def script(self, key: str, *responses: tuple[int, bytes]) -> None:
        self.responses[key] = [(status, body, {}) for status, body in responses]

    async def handle(self, request: web.Request) -> web.Response:
        key = f"{request.match_info['name']}/{request.match_info['version']}"
        self.hits[key] += 1
        queue = self.responses.get(key)
        if not queue:
            return web.Response(status=404, text="not found")
        status, body, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        return web.Response(status=status, body=body, headers=headers)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/crates/{name}/{version}/download", self.handle)
        return app


def _fetcher(store: Path, server: TestServer, **kwargs: object) -> ArtifactFetcher:
    config = FetcherConfig(
        upstream_url=str(server.make_url("/crates")),
        backoff=NO_DELAY,
        **kwargs,  # type: ignore[arg-type]
    )
    return ArtifactFetcher(store, config)


def _store_files(store: Path) -> list[str]:
    return sorted(str(p.relative_to(store)) for p in store.rglob("*") if p.is_file())


class TestFetchSuccess:
    """Tests for successful downloads."""

    @pytest.mark.asyncio
    async def test_fetch_writes_verified_artifact(self, tmp_path: Path) -> None:
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (200, PAYLOAD))

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            artifact = await fetcher.fetch(RECORD)

        assert artifact.path == tmp_path / "foo" / "1.0.0" / "download"
        assert artifact.path.read_bytes() == PAYLOAD
        assert artifact.size_bytes == len(PAYLOAD)
        assert artifact.attempts == 1
        assert _store_files(tmp_path) == ["foo/1.0.0/download"]

    @pytest.mark.asyncio
    async def test_url_is_upstream_download_path(self, tmp_path: Path) -> None:
        fetcher = ArtifactFetcher(tmp_path, FetcherConfig(upstream_url="https://up.example/crates/"))
        assert fetcher.url_for(RECORD) == "https://up.example/crates/foo/1.0.0/download"
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, tmp_path: Path) -> None:
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (503, b"busy"), (200, PAYLOAD))

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            artifact = await fetcher.fetch(RECORD)

        assert artifact.attempts == 2
        assert upstream.hits["foo/1.0.0"] == 2
        assert artifact.path.read_bytes() == PAYLOAD

    @pytest.mark.asyncio
    async def test_corrupt_store_copy_replaced(self, tmp_path: Path) -> None:
        stale = tmp_path / RECORD.download_path
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"truncated")
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (200, PAYLOAD))

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            await fetcher.fetch(RECORD)

        assert stale.read_bytes() == PAYLOAD


class TestFetchFailures:
    """Tests for failed downloads."""

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self, tmp_path: Path) -> None:
        upstream = FakeUpstream()

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch(RECORD)

        assert exc_info.value.kind == FetchErrorKind.PERMANENT
        assert exc_info.value.status == 404
        assert exc_info.value.attempts == 1
        assert upstream.hits["foo/1.0.0"] == 1
        assert _store_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, tmp_path: Path) -> None:
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (500, b"boom"))

        async with (
            TestServer(upstream.app()) as server,
            _fetcher(tmp_path, server, max_retries=2) as fetcher,
        ):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch(RECORD)

        assert exc_info.value.is_transient
        assert exc_info.value.attempts == 3
        assert upstream.hits["foo/1.0.0"] == 3
        assert _store_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_checksum_mismatch_discards_download(self, tmp_path: Path) -> None:
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (200, b"tampered"))

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            with pytest.raises(VerificationMismatch) as exc_info:
                await fetcher.fetch(RECORD)

        assert exc_info.value.expected == RECORD.checksum
        assert exc_info.value.actual == hashlib.sha256(b"tampered").hexdigest()
        assert exc_info.value.attempts == 1
        assert upstream.hits["foo/1.0.0"] == 1
        assert _store_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_not_found_body_is_permanent(self, tmp_path: Path) -> None:
        """A 200 carrying the upstream's not-found page is a missing crate."""
        body = b'{"errors":[{"detail":"Not Found"}]}'
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (200, body))

        with patch(
            "cratemirror.fetch.fetcher.NOT_FOUND_BODY_SHA256", hashlib.sha256(body).hexdigest()
        ):
            async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
                with pytest.raises(FetchError) as exc_info:
                    await fetcher.fetch(RECORD)

        assert exc_info.value.kind == FetchErrorKind.PERMANENT
        assert "not found" in str(exc_info.value)
        assert _store_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_mismatch_keeps_existing_store_file(self, tmp_path: Path) -> None:
        """A failed re-download never destroys what is already stored."""
        stale = tmp_path / RECORD.download_path
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"old")
        upstream = FakeUpstream()
        upstream.script("foo/1.0.0", (200, b"tampered"))

        async with TestServer(upstream.app()) as server, _fetcher(tmp_path, server) as fetcher:
            with pytest.raises(VerificationMismatch):
                await fetcher.fetch(RECORD)

        assert stale.read_bytes() == b"old"
        assert _store_files(tmp_path) == ["foo/1.0.0/download"]

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, tmp_path: Path) -> None:
        release = asyncio.Event()

        async def slow(request: web.Request) -> web.Response:
            await release.wait()
            return web.Response(body=PAYLOAD)

        app = web.Application()
        app.router.add_get("/crates/{name}/{version}/download", slow)

        async with TestServer(app) as server:
            async with _fetcher(tmp_path, server, request_timeout_s=0.1, max_retries=0) as fetcher:
                with pytest.raises(FetchError) as exc_info:
                    await fetcher.fetch(RECORD)
            release.set()

        assert exc_info.value.is_transient
        assert _store_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_cancellation_removes_part_file(self, tmp_path: Path) -> None:
        release = asyncio.Event()

        async def stalled(request: web.Request) -> web.StreamResponse:
            response = web.StreamResponse()
            response.content_length = len(PAYLOAD)
            await response.prepare(request)
            await response.write(PAYLOAD[:1024])
            await release.wait()
            return response

        app = web.Application()
        app.router.add_get("/crates/{name}/{version}/download", stalled)
        part = tmp_path / (RECORD.download_path + PART_SUFFIX)

        async with TestServer(app) as server, _fetcher(tmp_path, server) as fetcher:
            task = asyncio.create_task(fetcher.fetch(RECORD))
            for _ in range(200):
                if part.exists():
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            release.set()

        assert not part.exists()
        assert _store_files(tmp_path) == []
