"""
Logging setup for crate-mirror.

Two output formats share one redaction pass:

- JSON lines (``--json-logs``), for cron and systemd runs that ship logs.
- ``LEVEL logger: message | key=value`` for interactive use.

Extras passed as ``logger.info("msg", extra={...})`` are flat scalars
(crate names, paths, counters, URLs). A git remote or upstream URL may
carry credentials in its userinfo, so URLs are reduced to scheme, host
and path before they are written anywhere.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit, urlunsplit

_URL_RE = re.compile(r"https?://[^\s\"'<>]+")
_TOKEN_RE = re.compile(r"\b(bearer|token)[=:\s]+['\"]?[\w\-\.]+['\"]?", re.I)

# Extra keys containing any of these are dropped
BLOCKED_FIELDS: frozenset[str] = frozenset({"password", "secret", "token", "authorization", "cookie"})

_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


def _redact_url(match: re.Match[str]) -> str:
    parts = urlsplit(match.group(0))
    host = parts.netloc.rpartition("@")[2]
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


def redact(text: str) -> str:
    """Strip URL userinfo and query strings, and mask bearer/token values."""
    if not text:
        return text
    return _TOKEN_RE.sub("[TOKEN]", _URL_RE.sub(_redact_url, text))


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """User-supplied extras of ``record``, with blocked keys dropped and text redacted."""
    extras: dict[str, Any] = {}
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        if any(blocked in key.lower() for blocked in BLOCKED_FIELDS):
            continue
        if value is None or isinstance(value, (bool, int, float)):
            extras[key] = value
        else:
            extras[key] = redact(str(value))
    return extras


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:

    {"ts": "2026-01-01T00:00:00.000+00:00", "level": "INFO", "logger": "...", "msg": "...", ...}

    WARNING and above also carry ``file`` and ``line``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact(record.getMessage()),
        }
        if record.levelno >= logging.WARNING:
            payload["file"] = record.filename
            payload["line"] = record.lineno
        if record.exc_info:
            payload["exc"] = redact(self.formatException(record.exc_info))
        payload.update(record_extras(record))
        return json.dumps(payload, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter: ``LEVEL logger: message | key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:8s} {record.name}: {redact(record.getMessage())}"
        extras = record_extras(record)
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info:
            line += "\n" + redact(self.formatException(record.exc_info))
        return line


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
) -> None:
    """Install one handler on the root logger, replacing any existing ones.

    Args:
        level: Root log level.
        json_format: Emit JSON lines instead of the human-readable format.
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
