"""Remote → tree translation.

Two steps, kept separate so the translation can be tested without a client:

* :func:`fetch_remote_tree` walks the remote issue graph (issue, comments,
  sub-issues, recursively). Sibling branches are fetched in parallel, with
  one request budget shared by the whole walk. A branch that fails to fetch,
  returns a malformed payload or revisits an issue already seen (a cycle)
  is kept as an error-carrying node instead of aborting.
* :func:`translate` turns that graph into an :class:`~issuetree.tree.Issue`,
  degrading error nodes to stubs.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .concurrency import ConcurrencyConfig, bounded_map
from .errors import RemoteError, redact
from .logging import get_logger
from .models import BODY, CloseState, Comment, IssueLink, Linked, LinkedComment, parse_timestamp
from .remote import IssueClient, RemoteComment, RemoteIssue
from .tree import Issue, IssueMeta

_WS_RE = re.compile(r"\s+")

T = TypeVar("T")


@dataclass
class RemoteIssueTree:
    link: IssueLink
    issue: RemoteIssue | None
    comments: list[RemoteComment] = field(default_factory=list)
    children: list[RemoteIssueTree] = field(default_factory=list)
    error: str | None = None
    title_hint: str = ""


def _clean_warning(text: str) -> str:
    # stub warnings are stored inside a one-line HTML comment marker
    return _WS_RE.sub(" ", redact(text)).replace("-->", "->").strip()


def normalize_text(text: str | None) -> str:
    """Remote bodies may carry CRLF line endings; the local file never does."""
    if not text:
        return ""
    return text.replace("\r\n", "\n")


_MALFORMED = (KeyError, ValueError, TypeError)


class _Walker:
    def __init__(self, client: IssueClient, concurrency: ConcurrencyConfig | None) -> None:
        self.client = client
        self.concurrency = concurrency
        self._visited: set[IssueLink] = set()
        self._lock = threading.Lock()
        # one budget for the whole walk; nested levels share it
        workers = concurrency.max_workers if concurrency is not None else ConcurrencyConfig().max_workers
        self._slots = threading.BoundedSemaphore(max(1, workers))

    def _claim(self, link: IssueLink) -> bool:
        with self._lock:
            if link in self._visited:
                return False
            self._visited.add(link)
            return True

    def _call(self, fn: Callable[[IssueLink], T], link: IssueLink) -> T:
        with self._slots:
            return fn(link)

    def fetch(self, link: IssueLink, known: RemoteIssue | None = None, *, strict: bool = False) -> RemoteIssueTree:
        title = known.title if known is not None else ""
        if not self._claim(link):
            return RemoteIssueTree(link, known, error=f"cycle: {link.url} already visited", title_hint=title)
        try:
            issue = known if known is not None else self._call(self.client.fetch_issue, link)
            comments = self._call(self.client.fetch_comments, link)
            subs = self._call(self.client.fetch_sub_issues, link)
        except RemoteError as exc:
            if strict:
                raise
            get_logger().warning("sub-issue fetch failed", issue=link.url, error=redact(str(exc)))
            return RemoteIssueTree(link, known, error=f"fetch failed: {exc}", title_hint=title)
        except _MALFORMED as exc:
            if strict:
                raise RemoteError(f"malformed response for {link.url}: {exc!r}") from exc
            get_logger().warning("malformed sub-issue payload", issue=link.url, error=redact(repr(exc)))
            return RemoteIssueTree(link, known, error=f"malformed response: {exc!r}", title_hint=title)
        children = bounded_map(
            lambda sub: self.fetch(sub.link(link), sub),
            subs,
            self.concurrency,
            operation="fetch_sub_issues",
        )
        return RemoteIssueTree(link, issue, comments, children, title_hint=issue.title)



def fetch_remote_tree(
    client: IssueClient, link: IssueLink, concurrency: ConcurrencyConfig | None = None
) -> RemoteIssueTree:
    """Fetch the whole remote graph below ``link``.

    Failures on the root itself propagate as :class:`RemoteError`; failures
    below it are recorded on the failing node.
    """
    return _Walker(client, concurrency).fetch(link, strict=True)


def translate(tree: RemoteIssueTree, current_user: str | None) -> Issue:
    if tree.error is not None or tree.issue is None:
        title = tree.title_hint or f"#{tree.link.number}"
        return Issue.stub(title, Linked(tree.link), _clean_warning(tree.error or "missing issue payload"))
    remote = tree.issue
    meta = IssueMeta(
        title=remote.title,
        identity=Linked(tree.link),
        close_state=CloseState.from_remote(remote.state, remote.state_reason),
        owned=current_user is not None and remote.user == current_user,
        author=remote.user,
    )
    comments = [Comment(BODY, remote.user, "")]
    comments.extend(Comment(LinkedComment(c.id), c.user, normalize_text(c.body)) for c in tree.comments)
    issue = Issue(
        meta,
        labels=list(remote.labels),
        comments=comments,
        children=[translate(child, current_user) for child in tree.children],
        last_contents_change=parse_timestamp(remote.updated_at),
    )
    issue.set_body(normalize_text(remote.body))
    return issue


def ingest(
    client: IssueClient,
    link: IssueLink,
    current_user: str | None = None,
    concurrency: ConcurrencyConfig | None = None,
) -> Issue:
    """Fetch and translate in one step."""
    return translate(fetch_remote_tree(client, link, concurrency), current_user)


__all__ = ["RemoteIssueTree", "fetch_remote_tree", "ingest", "normalize_text", "translate"]
