"""Error taxonomy & redaction.

Two halves live here:

* the exception hierarchy raised by the sync engine (``ParseError``,
  ``IdentityMismatch``, ``RemoteError``, ``RemoteActionFailed``,
  ``StaleBase``), all rooted at ``IssueTreeError``;
* ``classify_error`` / ``redact`` which turn any exception into an
  ``ErrorInfo`` safe to log or embed in a push report.

Public API:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

# Simple token patterns; can be expanded (e.g., GitHub token, private key markers)
_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gho_[A-Za-z0-9]{20,40}"),  # OAuth tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"(?i)(authorization:\s*(?:bearer|token)\s+)\S+"),
]

_REDACTION_PLACEHOLDER = "<redacted>"

_NOT_FOUND_STATUSES = {404, 410}
_AUTH_STATUSES = {401, 403}
_SERVER_ERROR_FLOOR = 500


class IssueTreeError(RuntimeError):
    """Base class for every error raised by the sync engine."""


class ParseError(IssueTreeError, ValueError):
    """Malformed local file content.

    Recoverable problems (bad blocker ordinals, skipped header levels) never
    raise; they degrade to free text. Only a file with no issue header at all
    is fatal.
    """

    def __init__(self, message: str, *, line: int | None = None):
        super().__init__(message if line is None else f"line {line}: {message}")
        self.line = line


class IdentityMismatch(IssueTreeError):
    """A linked local node no longer matches anything remote (or in the snapshot)."""

    def __init__(self, message: str, *, path: Sequence[int] = ()):
        super().__init__(message)
        self.path = tuple(path)


class RemoteError(IssueTreeError):
    """Raised by client implementations when a single remote call fails."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteActionFailed(IssueTreeError):
    """A planned remote action could not be applied."""

    def __init__(self, action: Any, cause: BaseException):
        super().__init__(f"{action.describe()} failed: {redact(str(cause))}")
        self.action = action
        self.cause = cause


class StaleBase(IssueTreeError):
    """Remote content changed since the snapshot was taken; a merge is required."""

    def __init__(self, paths: Sequence[Sequence[int]], details: Sequence[str] = ()):
        rendered = ", ".join(format_path(p) for p in paths) or "<root>"
        super().__init__(f"remote changed since last sync at {rendered}; pull and merge first")
        self.paths = [tuple(p) for p in paths]
        self.details = list(details)


def format_path(path: Sequence[int]) -> str:
    """Render a tree path the way reports show it (``/`` for the root)."""
    return "/" + "/".join(str(i) for i in path)


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "category": self.category,
            "message": self.message,
            "original_type": self.original_type,
            "transient": self.transient,
        }
        if self.details:
            out["details"] = self.details
        return out


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        if pat.groups:
            redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
        else:
            redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def classify_error(exc: BaseException) -> ErrorInfo:  # noqa: PLR0911 - flat category table
    """Best-effort classification of an exception.

    Strategy:
    - ``RemoteActionFailed`` is unwrapped to its cause
    - HTTP status carried by the exception wins (404/410 -> identity, 401/403 -> auth, 5xx -> server)
    - rate limit / abuse wording -> transient github categories
    - network-y keywords -> 'network', transient
    - parse errors -> 'parse'
    - fallback -> 'generic'
    """
    if isinstance(exc, RemoteActionFailed):
        return classify_error(exc.cause)
    msg = str(exc) if exc else ""
    low = msg.lower()
    kind = exc.__class__.__name__
    status = _status_of(exc)
    details = {"status": status} if status is not None else None

    if isinstance(exc, IdentityMismatch) or status in _NOT_FOUND_STATUSES:
        return ErrorInfo("identity_mismatch", redact(msg), kind, details=details)
    if isinstance(exc, StaleBase):
        return ErrorInfo("stale_base", redact(msg), kind)
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("github.rate_limit", redact(msg), kind, transient=True, details=details)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), kind, transient=True, details=details)
    if status in _AUTH_STATUSES:
        return ErrorInfo("github.auth", redact(msg), kind, details=details)
    if status is not None and status >= _SERVER_ERROR_FLOOR:
        return ErrorInfo("github.server", redact(msg), kind, transient=True, details=details)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), kind, transient=True, details=details)
    if isinstance(exc, ParseError) or any(k in low for k in ("yaml", "scannererror", "parsererror")):
        return ErrorInfo("parse", redact(msg), kind)
    return ErrorInfo("generic", redact(msg), kind, details=details)


__all__ = [
    "ErrorInfo",
    "IdentityMismatch",
    "IssueTreeError",
    "ParseError",
    "RemoteActionFailed",
    "RemoteError",
    "StaleBase",
    "classify_error",
    "format_path",
    "redact",
]
