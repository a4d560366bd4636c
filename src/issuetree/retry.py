"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter around one idempotent remote call. Only
failures that ``classify_error`` marks as transient (rate limit, abuse
detection, 5xx, network) or connection-level ``requests`` errors trigger a
retry; everything else propagates immediately.

Environment overrides:
  ISSUETREE_RETRY_ATTEMPTS (default 3)
  ISSUETREE_RETRY_BASE (seconds base, default 0.5)
  ISSUETREE_RETRY_MAX_SLEEP (cap on a single sleep, unset = no cap)

Create calls are not idempotent and must never be wrapped here; the pusher
checks whether an earlier attempt landed instead.
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests

from .errors import classify_error

T = TypeVar("T")

logger = logging.getLogger(__name__)

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(_env_float("ISSUETREE_RETRY_ATTEMPTS", 3) or 3))
    base_sleep: float = field(default_factory=lambda: _env_float("ISSUETREE_RETRY_BASE", 0.5) or 0.0)
    max_sleep: float | None = field(default_factory=lambda: _env_float("ISSUETREE_RETRY_MAX_SLEEP", None))


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return classify_error(exc).transient


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: BaseException) -> float:
    hint = getattr(exc, "retry_after", None)
    explicit = float(hint) if isinstance(hint, (int, float)) and hint > 0 else _extract_explicit_backoff(str(exc))
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    if cfg.max_sleep is not None and cfg.max_sleep >= 0:
        sleep_for = min(sleep_for, cfg.max_sleep)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    label: str = "remote call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or not is_transient(exc):
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            logger.warning(
                "[retry] %s: transient error, attempt %d/%d, sleeping %.2fs",
                label,
                attempt,
                attempts,
                sleep_for,
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient"]
