"""
Retry backoff and HTTP status classification for artifact downloads.

- Transient failures (connection errors, timeouts, 5xx, 429) are retried
  with exponential backoff and jitter.
- Retry-After is respected when the upstream sends it.
- Permanent failures (404 and other 4xx) are never retried.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from cratemirror.errors import FetchError, FetchErrorKind

RATE_LIMIT_STATUS = 429


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff."""

    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_factor: float = 0.5  # 0.5 = ±50% jitter

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            msg = f"base_delay_ms must be >= 0, got {self.base_delay_ms}"
            raise ValueError(msg)
        if self.max_delay_ms < self.base_delay_ms:
            msg = f"max_delay_ms must be >= base_delay_ms, got {self.max_delay_ms}"
            raise ValueError(msg)
        if self.multiplier < 1.0:
            msg = f"multiplier must be >= 1.0, got {self.multiplier}"
            raise ValueError(msg)
        if not 0.0 <= self.jitter_factor <= 1.0:
            msg = f"jitter_factor must be 0..1, got {self.jitter_factor}"
            raise ValueError(msg)


@dataclass
class BackoffState:
    """Mutable per-download retry state."""

    attempt: int = 0

    def reset(self) -> None:
        self.attempt = 0

    def record_error(self) -> None:
        self.attempt += 1


def compute_backoff_delay(
    config: BackoffConfig,
    state: BackoffState,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute backoff delay with exponential increase and jitter.

    Args:
        config: Backoff configuration.
        state: Current backoff state.
        retry_after_ms: Server-provided retry delay (Retry-After header).
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds before next retry.
    """
    if state.attempt == 0:
        return 0

    delay = config.base_delay_ms * (config.multiplier ** (state.attempt - 1))

    jitter_min = 1.0 - config.jitter_factor
    jitter_max = 1.0 + config.jitter_factor
    if rng is not None:
        jitter_multiplier = rng.uniform(jitter_min, jitter_max)
    else:
        jitter_multiplier = random.uniform(jitter_min, jitter_max)
    delay = delay * jitter_multiplier

    delay = min(delay, config.max_delay_ms)

    # Server knows best
    if retry_after_ms is not None and retry_after_ms > 0:
        delay = max(delay, retry_after_ms)

    return int(delay)


def parse_retry_after(value: str | None) -> int | None:
    """Parse a Retry-After header given in seconds. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return int(seconds * 1000)


def classify_status(
    status: int,
    url: str,
    retry_after_ms: int | None = None,
) -> FetchError | None:
    """
    Map a non-success HTTP status to a FetchError.

    Args:
        status: HTTP status code.
        url: Requested URL (for the error message).
        retry_after_ms: Parsed Retry-After header, if any.

    Returns:
        FetchError for failures, None for 2xx.
    """
    if 200 <= status < 300:
        return None
    if status == RATE_LIMIT_STATUS:
        return FetchError(
            f"Rate limited (429) fetching {url}",
            kind=FetchErrorKind.TRANSIENT,
            status=status,
            retry_after_ms=retry_after_ms,
        )
    if status >= 500:
        return FetchError(
            f"Server error ({status}) fetching {url}",
            kind=FetchErrorKind.TRANSIENT,
            status=status,
            retry_after_ms=retry_after_ms,
        )
    return FetchError(
        f"HTTP {status} fetching {url}",
        kind=FetchErrorKind.PERMANENT,
        status=status,
    )
