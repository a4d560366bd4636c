"""In-memory issue tracker.

Used when ``ISSUETREE_MOCK=1`` and throughout the test-suite. It mirrors the
behaviour the engine relies on from the real tracker: numbers are allocated
per repository, sub-issues have a single parent, every mutation bumps
``updated_at`` and every call is recorded in :attr:`MockGitHub.calls`.
Failures can be injected per method (optionally per issue number).
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .errors import RemoteError
from .models import IssueLink, RepoRef, format_timestamp
from .remote import CreatedIssue, RemoteComment, RemoteIssue

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


@dataclass
class _Stored:
    issue: RemoteIssue
    comments: list[RemoteComment] = field(default_factory=list)
    sub_issues: list[IssueLink] = field(default_factory=list)
    parent: IssueLink | None = None


@dataclass
class _Failure:
    method: str
    error: Exception
    number: int | None = None
    times: int = 1


class MockGitHub:
    def __init__(self, user: str = "mock-user") -> None:
        self.user = user
        self.calls: list[tuple[str, str]] = []
        self._issues: dict[IssueLink, _Stored] = {}
        self._numbers: dict[RepoRef, int] = {}
        self._ids = itertools.count(1000)
        self._clock = itertools.count(1)
        self._failures: list[_Failure] = []

    # ---- test helpers -------------------------------------------------
    def _now(self) -> str:
        return format_timestamp(_EPOCH + timedelta(seconds=next(self._clock)))

    def seed_issue(
        self,
        repo: str,
        title: str,
        body: str | None = "",
        *,
        labels: list[str] | None = None,
        user: str | None = None,
        state: str = "open",
        state_reason: str | None = None,
        parent: IssueLink | None = None,
        comments: list[tuple[str | None, str]] | None = None,
    ) -> IssueLink:
        """Create an issue directly, bypassing failure injection and the call log."""
        ref = RepoRef.parse(repo)
        number = self._numbers.get(ref, 0) + 1
        self._numbers[ref] = number
        link = IssueLink(ref.owner, ref.repo, number)
        issue = RemoteIssue(
            id=next(self._ids),
            number=number,
            title=title,
            body=body,
            labels=list(labels or []),
            user=user or self.user,
            state=state,
            state_reason=state_reason,
            updated_at=self._now(),
            html_url=link.url,
        )
        stored = _Stored(issue)
        for author, text in comments or []:
            stored.comments.append(RemoteComment(next(self._ids), text, author or self.user))
        self._issues[link] = stored
        if parent is not None:
            self._attach(parent, link)
        return link

    def fail(self, method: str, error: Exception | None = None, *, number: int | None = None, times: int = 1) -> None:
        """Make the next ``times`` calls of ``method`` (on ``number``) raise ``error``."""
        self._failures.append(
            _Failure(method, error or RemoteError(f"injected {method} failure", status=500), number, times)
        )

    def touch(self, link: IssueLink) -> None:
        """Simulate an unrelated remote edit that only bumps ``updated_at``."""
        self._get(link).issue.updated_at = self._now()

    def issue(self, link: IssueLink) -> RemoteIssue:
        return copy.deepcopy(self._get(link).issue)

    def comments(self, link: IssueLink) -> list[RemoteComment]:
        return copy.deepcopy(self._get(link).comments)

    def sub_issue_links(self, link: IssueLink) -> list[IssueLink]:
        return list(self._get(link).sub_issues)

    def calls_to(self, method: str) -> list[str]:
        return [target for name, target in self.calls if name == method]

    # ---- internals ----------------------------------------------------
    def _record(self, method: str, target: IssueLink | RepoRef | None) -> None:
        number = target.number if isinstance(target, IssueLink) else None
        self.calls.append((method, str(target) if target is not None else ""))
        for failure in self._failures:
            if failure.method == method and failure.times > 0 and failure.number in (None, number):
                failure.times -= 1
                raise failure.error

    def _get(self, link: IssueLink) -> _Stored:
        stored = self._issues.get(link)
        if stored is None:
            raise RemoteError(f"issue {link} not found", status=404)
        return stored

    def _bump(self, link: IssueLink) -> None:
        self._get(link).issue.updated_at = self._now()

    def _comment(self, link: IssueLink, comment_id: int) -> RemoteComment:
        for comment in self._get(link).comments:
            if comment.id == comment_id:
                return comment
        raise RemoteError(f"comment {comment_id} not found on {link}", status=404)

    def _attach(self, parent: IssueLink, child: IssueLink) -> None:
        child_stored = self._get(child)
        if child_stored.parent is not None:
            self._get(child_stored.parent).sub_issues.remove(child)
        self._get(parent).sub_issues.append(child)
        child_stored.parent = parent

    # ---- IssueClient --------------------------------------------------
    def fetch_issue(self, link: IssueLink) -> RemoteIssue:
        self._record("fetch_issue", link)
        return copy.deepcopy(self._get(link).issue)

    def fetch_comments(self, link: IssueLink) -> list[RemoteComment]:
        self._record("fetch_comments", link)
        return copy.deepcopy(self._get(link).comments)

    def fetch_sub_issues(self, link: IssueLink) -> list[RemoteIssue]:
        self._record("fetch_sub_issues", link)
        return [copy.deepcopy(self._get(child).issue) for child in self._get(link).sub_issues]

    def find_issue_by_title(self, repo: RepoRef, title: str) -> RemoteIssue | None:
        self._record("find_issue_by_title", repo)
        for link, stored in self._issues.items():
            if link.repo_ref == repo and stored.issue.title == title:
                return copy.deepcopy(stored.issue)
        return None

    def fetch_authenticated_user(self) -> str | None:
        self._record("fetch_authenticated_user", None)
        return self.user

    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: list[str],
    ) -> CreatedIssue:
        self._record("create_issue", repo)
        link = self.seed_issue(repo.slug, title, body, labels=labels)
        stored = self._get(link)
        return CreatedIssue(id=stored.issue.id, number=link.number, url=link.url)

    def update_issue_state(self, link: IssueLink, state: str, state_reason: str | None) -> None:
        self._record("update_issue_state", link)
        issue = self._get(link).issue
        issue.state = state
        issue.state_reason = (state_reason or "completed") if state == "closed" else None
        self._bump(link)

    def update_issue_body(self, link: IssueLink, body: str) -> None:
        self._record("update_issue_body", link)
        self._get(link).issue.body = body
        self._bump(link)

    def update_issue_meta(
        self, link: IssueLink, *, title: str | None = None, labels: list[str] | None = None
    ) -> None:
        self._record("update_issue_meta", link)
        issue = self._get(link).issue
        if title is not None:
            issue.title = title
        if labels is not None:
            issue.labels = list(labels)
        self._bump(link)

    def create_comment(self, link: IssueLink, body: str) -> int:
        self._record("create_comment", link)
        comment = RemoteComment(next(self._ids), body, self.user)
        self._get(link).comments.append(comment)
        self._bump(link)
        return comment.id

    def update_comment(self, link: IssueLink, comment_id: int, body: str) -> None:
        self._record("update_comment", link)
        self._comment(link, comment_id).body = body
        self._bump(link)

    def delete_comment(self, link: IssueLink, comment_id: int) -> None:
        self._record("delete_comment", link)
        stored = self._get(link)
        stored.comments.remove(self._comment(link, comment_id))
        self._bump(link)

    def add_sub_issue(self, parent: IssueLink, child: IssueLink) -> None:
        self._record("add_sub_issue", parent)
        self._attach(parent, child)
        self._bump(parent)

    def remove_sub_issue(self, parent: IssueLink, child: IssueLink) -> None:
        self._record("remove_sub_issue", parent)
        stored = self._get(parent)
        if child not in stored.sub_issues:
            raise RemoteError(f"{child} is not a sub-issue of {parent}", status=404)
        stored.sub_issues.remove(child)
        self._get(child).parent = None
        self._bump(parent)


__all__ = ["MockGitHub"]
