"""Client capability consumed by the sync engine.

The engine never talks HTTP itself; it depends on :class:`IssueClient`,
implemented by :mod:`issuetree.github_rest` (real tracker) and
:mod:`issuetree.mock_github` (in-memory). Implementations raise
:class:`~issuetree.errors.RemoteError` (or a subclass) when a single call
fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import IssueLink, RepoRef


@dataclass
class RemoteIssue:
    id: int
    number: int
    title: str
    body: str | None = None
    labels: list[str] = field(default_factory=list)
    user: str | None = None
    state: str = "open"
    state_reason: str | None = None
    updated_at: str | None = None
    html_url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteIssue:
        """Build from a GitHub REST issue payload; tolerant of missing fields."""
        labels: list[str] = []
        for entry in data.get("labels") or []:
            if isinstance(entry, dict) and isinstance(entry.get("name"), str):
                labels.append(entry["name"])
            elif isinstance(entry, str):
                labels.append(entry)
        user = data.get("user")
        body = data.get("body")
        return cls(
            id=int(data.get("id") or 0),
            number=int(data["number"]),
            title=str(data.get("title") or ""),
            body=body if isinstance(body, str) else None,
            labels=labels,
            user=user.get("login") if isinstance(user, dict) else None,
            state=str(data.get("state") or "open"),
            state_reason=data.get("state_reason"),
            updated_at=data.get("updated_at"),
            html_url=str(data.get("html_url") or ""),
        )

    def link(self, fallback: IssueLink | None = None) -> IssueLink:
        """Resolve this issue's link from its URL, or from a sibling link."""
        parsed = IssueLink.parse(self.html_url) if self.html_url else None
        if parsed is not None:
            return parsed
        if fallback is None:
            raise ValueError(f"cannot resolve link for issue #{self.number}")
        return fallback.sibling(self.number)


@dataclass
class RemoteComment:
    id: int
    body: str | None
    user: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteComment:
        user = data.get("user")
        body = data.get("body")
        return cls(
            id=int(data["id"]),
            body=body if isinstance(body, str) else None,
            user=user.get("login") if isinstance(user, dict) else None,
        )


@dataclass
class CreatedIssue:
    id: int
    number: int
    url: str

    @property
    def link(self) -> IssueLink:
        parsed = IssueLink.parse(self.url)
        if parsed is None:
            raise ValueError(f"create returned an unparseable url {self.url!r}")
        return parsed


class IssueClient(Protocol):
    def fetch_issue(self, link: IssueLink) -> RemoteIssue: ...

    def fetch_comments(self, link: IssueLink) -> list[RemoteComment]: ...

    def fetch_sub_issues(self, link: IssueLink) -> list[RemoteIssue]: ...

    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: list[str],
    ) -> CreatedIssue: ...

    def update_issue_state(self, link: IssueLink, state: str, state_reason: str | None) -> None: ...

    def update_issue_body(self, link: IssueLink, body: str) -> None: ...

    def update_issue_meta(
        self, link: IssueLink, *, title: str | None = None, labels: list[str] | None = None
    ) -> None: ...

    def create_comment(self, link: IssueLink, body: str) -> int: ...

    def update_comment(self, link: IssueLink, comment_id: int, body: str) -> None: ...

    def delete_comment(self, link: IssueLink, comment_id: int) -> None: ...

    def add_sub_issue(self, parent: IssueLink, child: IssueLink) -> None: ...

    def remove_sub_issue(self, parent: IssueLink, child: IssueLink) -> None: ...

    def find_issue_by_title(self, repo: RepoRef, title: str) -> RemoteIssue | None: ...

    def fetch_authenticated_user(self) -> str | None: ...


__all__ = ["CreatedIssue", "IssueClient", "RemoteComment", "RemoteIssue"]
