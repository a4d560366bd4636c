"""In-memory issue tree.

An :class:`Issue` owns its comments and its children outright; there are no
back references, so a tree can be copied, compared and serialised as plain
data. ``comments[0]`` always holds the body free text (identity ``Body``);
the trailing blocker run lives in ``blockers`` and is re-attached by
:meth:`Issue.body`.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from . import blockers as blocker_codec
from .blockers import BlockerItem, BlockerSequence
from .models import (
    BODY,
    PENDING,
    PENDING_COMMENT,
    Body,
    CloseReason,
    CloseState,
    Comment,
    CommentIdentity,
    IssueIdentity,
    IssueLink,
    Linked,
    LinkedComment,
    Pending,
    format_timestamp,
    parse_timestamp,
)

Path = tuple[int, ...]


@dataclass
class IssueMeta:
    title: str
    identity: IssueIdentity = PENDING
    close_state: CloseState = field(default_factory=CloseState.open)
    owned: bool = False
    author: str | None = None


@dataclass
class Issue:
    meta: IssueMeta
    labels: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=lambda: [Comment(BODY, None, "")])
    children: list[Issue] = field(default_factory=list)
    blockers: BlockerSequence = field(default_factory=BlockerSequence)
    last_contents_change: datetime | None = None
    warning: str | None = None

    def __post_init__(self) -> None:
        self.labels = dedupe_labels(self.labels)
        if not self.comments or not isinstance(self.comments[0].identity, Body):
            self.comments.insert(0, Comment(BODY, self.meta.author, ""))

    @classmethod
    def pending(cls, title: str, body: str = "", labels: list[str] | None = None) -> Issue:
        issue = cls(IssueMeta(title=title), labels=list(labels or []))
        issue.set_body(body)
        return issue

    @classmethod
    def stub(cls, title: str, identity: IssueIdentity, warning: str) -> Issue:
        """Placeholder for a branch that could not be ingested."""
        return cls(IssueMeta(title=title, identity=identity), warning=warning)

    # --- body -----------------------------------------------------------
    def body(self) -> str:
        return blocker_codec.serialize(self.comments[0].text, self.blockers)

    def set_body(self, text: str) -> None:
        free_text, seq = blocker_codec.parse(text)
        self.comments[0].text = free_text
        self.blockers = seq

    @property
    def free_text(self) -> str:
        return self.comments[0].text

    @property
    def true_comments(self) -> list[Comment]:
        return self.comments[1:]

    # --- identity -------------------------------------------------------
    @property
    def identity(self) -> IssueIdentity:
        return self.meta.identity

    @property
    def link(self) -> IssueLink | None:
        ident = self.meta.identity
        return ident.link if isinstance(ident, Linked) else None

    @property
    def is_stub(self) -> bool:
        return self.warning is not None

    @property
    def label_set(self) -> frozenset[str]:
        return frozenset(self.labels)

    def find(self, identity: IssueIdentity) -> Issue | None:
        """Depth-first search by remote identity; ``Pending`` never matches."""
        if isinstance(identity, Pending):
            return None
        for _, node in self.walk():
            if node.meta.identity == identity:
                return node
        return None

    def walk(self, prefix: Path = ()) -> Iterator[tuple[Path, Issue]]:
        yield prefix, self
        for idx, child in enumerate(self.children):
            yield from child.walk((*prefix, idx))

    def flatten(self) -> list[tuple[Path, Issue]]:
        """Pre-order ``(path, node)`` pairs; the root has the empty path."""
        return list(self.walk())

    def node_at(self, path: Path) -> Issue:
        node = self
        for idx in path:
            node = node.children[idx]
        return node

    def clone(self) -> Issue:
        return copy.deepcopy(self)


def dedupe_labels(labels: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for label in labels:
        name = label.strip()
        if name and name not in seen:
            seen.add(name)
            out.append(name)
    return out


# --- dict form (snapshot store) -----------------------------------------


def _identity_to_dict(identity: IssueIdentity) -> str | None:
    return identity.link.url if isinstance(identity, Linked) else None


def _identity_from_dict(value: Any) -> IssueIdentity:
    if not value:
        return PENDING
    link = IssueLink.parse(str(value))
    if link is None:
        raise ValueError(f"invalid issue url in snapshot: {value!r}")
    return Linked(link)


def _comment_id_to_dict(identity: CommentIdentity) -> str | int | None:
    if isinstance(identity, Body):
        return "body"
    if isinstance(identity, LinkedComment):
        return identity.comment_id
    return None


def _comment_id_from_dict(value: Any) -> CommentIdentity:
    if value == "body":
        return BODY
    if isinstance(value, int):
        return LinkedComment(value)
    return PENDING_COMMENT


def _blocker_to_dict(item: BlockerItem) -> dict[str, Any]:
    return {
        "ordinal": item.ordinal,
        "blocking": item.blocking,
        "done": item.done,
        "description": item.description,
        "nested": list(item.nested),
        "prerequisites": list(item.prerequisites),
        "marker": item.marker,
        "box": item.box,
    }


def to_dict(issue: Issue) -> dict[str, Any]:
    meta = issue.meta
    return {
        "title": meta.title,
        "identity": _identity_to_dict(meta.identity),
        "close_reason": meta.close_state.reason.value if meta.close_state.reason else None,
        "owned": meta.owned,
        "author": meta.author,
        "labels": list(issue.labels),
        "comments": [
            {"id": _comment_id_to_dict(c.identity), "author": c.author, "text": c.text}
            for c in issue.comments
        ],
        "blockers": {
            "items": [_blocker_to_dict(i) for i in issue.blockers.items],
            "warnings": list(issue.blockers.warnings),
        },
        "last_contents_change": format_timestamp(issue.last_contents_change) if issue.last_contents_change else None,
        "warning": issue.warning,
        "children": [to_dict(child) for child in issue.children],
    }


def issue_from_dict(raw: dict[str, Any]) -> Issue:
    reason = raw.get("close_reason")
    close_state = CloseState.closed(CloseReason(reason)) if reason else CloseState.open()
    meta = IssueMeta(
        title=str(raw.get("title") or ""),
        identity=_identity_from_dict(raw.get("identity")),
        close_state=close_state,
        owned=bool(raw.get("owned", False)),
        author=raw.get("author"),
    )
    comments = [
        Comment(_comment_id_from_dict(c.get("id")), c.get("author"), str(c.get("text") or ""))
        for c in raw.get("comments") or []
    ]
    blockers_raw = raw.get("blockers") or {}
    items = [
        BlockerItem(
            ordinal=str(b["ordinal"]),
            blocking=bool(b["blocking"]),
            done=bool(b["done"]),
            description=str(b.get("description") or ""),
            nested=list(b.get("nested") or []),
            prerequisites=list(b.get("prerequisites") or []),
            marker=str(b.get("marker") or ""),
            box=b.get("box"),
        )
        for b in blockers_raw.get("items") or []
    ]
    changed = raw.get("last_contents_change")
    return Issue(
        meta=meta,
        labels=list(raw.get("labels") or []),
        comments=comments,
        children=[issue_from_dict(child) for child in raw.get("children") or []],
        blockers=BlockerSequence(items, list(blockers_raw.get("warnings") or [])),
        last_contents_change=parse_timestamp(changed),
        warning=raw.get("warning"),
    )


__all__ = [
    "Issue",
    "IssueMeta",
    "Path",
    "dedupe_labels",
    "issue_from_dict",
    "to_dict",
]
