"""
Registry config rewriting.

The index root holds ``config.json``, read by cargo to learn where crate
files are downloaded from:

    {
      "dl": "https://static.crates.io/crates",
      "api": "https://crates.io"
    }

Pointing ``dl`` at the mirror makes clients download from it. Only that
field is replaced; every other field and the key order are preserved.
The document is replaced atomically (temp file in the same directory,
then rename), never edited in place.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import orjson

from cratemirror.errors import ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)

DOWNLOAD_URL_FIELD = "dl"


def read_registry_config(config_path: Path) -> dict[str, Any]:
    """Load and minimally validate the registry config document.

    Raises:
        ConfigError: MISSING if the file does not exist, MALFORMED if it is
            not a JSON object with a string ``dl`` field.
    """
    return _load(config_path)[1]


def _load(config_path: Path) -> tuple[bytes, dict[str, Any]]:
    try:
        raw = config_path.read_bytes()
    except FileNotFoundError as e:
        msg = f"Registry config not found: {config_path}"
        raise ConfigError(msg, ConfigErrorKind.MISSING, config_path) from e
    except OSError as e:
        msg = f"Cannot read registry config {config_path}: {e}"
        raise ConfigError(msg, ConfigErrorKind.MISSING, config_path) from e

    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        msg = f"Registry config is not valid JSON: {config_path}: {e}"
        raise ConfigError(msg, ConfigErrorKind.MALFORMED, config_path) from e

    if not isinstance(data, dict):
        msg = f"Registry config must be a JSON object, got {type(data).__name__}"
        raise ConfigError(msg, ConfigErrorKind.MALFORMED, config_path)
    if not isinstance(data.get(DOWNLOAD_URL_FIELD), str):
        msg = f"Registry config has no string {DOWNLOAD_URL_FIELD!r} field: {config_path}"
        raise ConfigError(msg, ConfigErrorKind.MALFORMED, config_path)
    return raw, data


def _serialize(data: dict[str, Any], *, trailing_newline: bool) -> bytes:
    payload = orjson.dumps(data, option=orjson.OPT_INDENT_2)
    if trailing_newline:
        payload += b"\n"
    return payload


def _atomic_write_bytes(path: Path, payload: bytes) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with tmp_path.open("wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def rewrite_download_url(config_path: Path, new_url: str) -> bool:
    """
    Point the registry's download URL at ``new_url``.

    Args:
        config_path: Path to ``config.json``.
        new_url: Replacement download base URL.

    Returns:
        True if the document was rewritten, False if it already pointed
        at ``new_url`` (the file is left byte-identical).

    Raises:
        ConfigError: MISSING, MALFORMED, or WRITE_FAILED.
    """
    raw, data = _load(config_path)
    current = data[DOWNLOAD_URL_FIELD]
    if current == new_url:
        logger.info("Registry download URL already set", extra={"dl": new_url})
        return False

    data[DOWNLOAD_URL_FIELD] = new_url
    trailing_newline = raw.endswith(b"\n")
    try:
        _atomic_write_bytes(config_path, _serialize(data, trailing_newline=trailing_newline))
    except OSError as e:
        msg = f"Failed to write registry config {config_path}: {e}"
        raise ConfigError(msg, ConfigErrorKind.WRITE_FAILED, config_path) from e

    logger.info("Replaced registry download URL", extra={"old_dl": current, "dl": new_url})
    return True
