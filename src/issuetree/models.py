"""Identity & close-state value types.

These are the leaves every other module builds on. Identities are tagged
variants: an issue is either ``Linked`` to a remote issue or ``Pending``
(exists only locally); a comment is the issue ``Body``, a ``LinkedComment``
or a ``PendingComment``. Consumers are expected to handle every variant
explicitly instead of checking a nullable id.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Union

logger = logging.getLogger(__name__)

GITHUB_HOST = "github.com"

_ISSUE_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)/issues/(?P<number>\d+)/?(?:[#?].*)?$"
)
_API_URL_RE = re.compile(
    r"^https?://[^/]+/(?:api/v3/)?repos/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)/issues/(?P<number>\d+)/?$"
)


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @classmethod
    def parse(cls, value: str) -> RepoRef:
        owner, sep, repo = value.strip().partition("/")
        if not sep or not owner or not repo or "/" in repo:
            raise ValueError(f"expected owner/repo, got {value!r}")
        return cls(owner, repo)

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class IssueLink:
    """A remote issue address: ``https://github.com/{owner}/{repo}/issues/{number}``."""

    owner: str
    repo: str
    number: int

    @classmethod
    def parse(cls, url: str) -> IssueLink | None:
        """Parse an html or API issue URL; returns None for anything else."""
        text = url.strip()
        m = _ISSUE_URL_RE.match(text) or _API_URL_RE.match(text)
        if not m:
            return None
        return cls(m.group("owner"), m.group("repo"), int(m.group("number")))

    @property
    def url(self) -> str:
        return f"https://{GITHUB_HOST}/{self.owner}/{self.repo}/issues/{self.number}"

    @property
    def repo_ref(self) -> RepoRef:
        return RepoRef(self.owner, self.repo)

    def sibling(self, number: int) -> IssueLink:
        """Link to another issue in the same repository."""
        return IssueLink(self.owner, self.repo, number)

    def __str__(self) -> str:
        return self.url


# --- issue identity ------------------------------------------------------


@dataclass(frozen=True)
class Linked:
    link: IssueLink

    @property
    def number(self) -> int:
        return self.link.number


@dataclass(frozen=True)
class Pending:
    pass


IssueIdentity = Union[Linked, Pending]

PENDING = Pending()


def identity_label(identity: IssueIdentity) -> str:
    if isinstance(identity, Linked):
        return f"#{identity.number}"
    return "<pending>"


# --- comment identity ----------------------------------------------------


@dataclass(frozen=True)
class Body:
    """Position 0: the issue description, not a true comment."""


@dataclass(frozen=True)
class LinkedComment:
    comment_id: int


@dataclass(frozen=True)
class PendingComment:
    pass


CommentIdentity = Union[Body, LinkedComment, PendingComment]

BODY = Body()
PENDING_COMMENT = PendingComment()


@dataclass
class Comment:
    identity: CommentIdentity
    author: str | None
    text: str


# --- close state ---------------------------------------------------------


class CloseReason(str, Enum):
    COMPLETED = "completed"
    NOT_PLANNED = "not_planned"
    DUPLICATE = "duplicate"


_CHECKBOX_BY_REASON = {
    CloseReason.COMPLETED: "x",
    CloseReason.NOT_PLANNED: "-",
    CloseReason.DUPLICATE: "=",
}
_REASON_BY_CHECKBOX = {v: k for k, v in _CHECKBOX_BY_REASON.items()}
OPEN_CHECKBOX = " "


@dataclass(frozen=True)
class CloseState:
    """``Open`` when ``reason`` is None, otherwise ``Closed(reason)``."""

    reason: CloseReason | None = None

    @classmethod
    def open(cls) -> CloseState:
        return cls(None)

    @classmethod
    def closed(cls, reason: CloseReason = CloseReason.COMPLETED) -> CloseState:
        return cls(reason)

    @property
    def is_open(self) -> bool:
        return self.reason is None

    @property
    def is_closed(self) -> bool:
        return self.reason is not None

    @classmethod
    def from_remote(cls, state: str | None, state_reason: str | None) -> CloseState:
        """Total mapping from the tracker's ``(state, state_reason)`` pair.

        Unknown or absent reasons on a closed issue map to ``Closed(Completed)``;
        an unknown state maps to ``Open``. Neither case is an error.
        """
        norm_state = (state or "").strip().lower()
        if norm_state == "open":
            return OPEN
        if norm_state != "closed":
            logger.warning("unknown issue state %r, treating as open", state)
            return OPEN
        norm_reason = (state_reason or "").strip().lower()
        if not norm_reason:
            return CLOSED_COMPLETED
        try:
            return cls(CloseReason(norm_reason))
        except ValueError:
            logger.warning("unknown state_reason %r, treating as completed", state_reason)
            return CLOSED_COMPLETED

    def to_remote_state(self) -> str:
        return "open" if self.reason is None else "closed"

    def to_remote_state_reason(self) -> str | None:
        return None if self.reason is None else self.reason.value

    # --- checkbox form used by the local file --------------------------
    def to_checkbox(self) -> str:
        if self.reason is None:
            return OPEN_CHECKBOX
        return _CHECKBOX_BY_REASON[self.reason]

    @classmethod
    def from_checkbox(cls, content: str) -> CloseState | None:
        if content in ("", OPEN_CHECKBOX):
            return OPEN
        if content == "X":
            return CLOSED_COMPLETED
        reason = _REASON_BY_CHECKBOX.get(content)
        return cls(reason) if reason is not None else None

    def __str__(self) -> str:
        return "open" if self.reason is None else f"closed({self.reason.value})"


OPEN = CloseState()
CLOSED_COMPLETED = CloseState(CloseReason.COMPLETED)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse the tracker's ISO-8601 timestamps (``Z`` suffix included)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning("unparseable timestamp %r ignored", value)
        return None


def format_timestamp(value: datetime) -> str:
    if value.utcoffset() == timedelta(0) and not value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat()


__all__ = [
    "BODY",
    "Body",
    "CLOSED_COMPLETED",
    "CloseReason",
    "CloseState",
    "Comment",
    "CommentIdentity",
    "IssueIdentity",
    "IssueLink",
    "Linked",
    "LinkedComment",
    "OPEN",
    "PENDING",
    "PENDING_COMMENT",
    "Pending",
    "PendingComment",
    "RepoRef",
    "format_timestamp",
    "identity_label",
    "parse_timestamp",
]
