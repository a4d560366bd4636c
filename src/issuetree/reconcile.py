"""Reconcile logic: edited tree vs last-synced snapshot → remote actions.

The diff is structural. Nodes are matched by identity when ``Linked`` and a
``Pending`` node always yields a create, never a content-based guess. Per
matched node actions are emitted in a fixed order::

    meta → state → body → comments (creates/updates, then deletes) → children

and a new child is emitted as ``CreateIssue`` → ``UpdateIssueState`` (closed
nodes only) → its own comments and children → ``AddSubIssue``. Actions
address nodes by their path in the *edited* tree, so an identity resolved by
an earlier action (a create) is visible to every later action in the same
subtree.

Conflicts (comment ids the snapshot has never seen, linked nodes the snapshot
does not know, duplicated links) are collected as
:class:`~issuetree.errors.IdentityMismatch`; the affected subtree produces no
actions at all.

Reordering linked sub-issues locally produces no action: the remote order
stays authoritative.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import IdentityMismatch, format_path
from .models import CloseState, IssueLink, Linked, LinkedComment, Pending, PendingComment
from .tree import Issue, Path


@dataclass(frozen=True)
class UpdateIssueMeta:
    path: Path
    title: str | None = None
    labels: tuple[str, ...] | None = None
    kind = "update_issue_meta"

    def describe(self) -> str:
        fields = [name for name, value in (("title", self.title), ("labels", self.labels)) if value is not None]
        return f"update {'+'.join(fields)} of {format_path(self.path)}"


@dataclass(frozen=True)
class UpdateIssueState:
    path: Path
    close_state: CloseState
    kind = "update_issue_state"

    def describe(self) -> str:
        return f"set {format_path(self.path)} {self.close_state}"


@dataclass(frozen=True)
class UpdateIssueBody:
    path: Path
    body: str
    kind = "update_issue_body"

    def describe(self) -> str:
        return f"update body of {format_path(self.path)}"


@dataclass(frozen=True)
class CreateComment:
    path: Path
    index: int
    body: str
    kind = "create_comment"

    def describe(self) -> str:
        return f"create comment {self.index} on {format_path(self.path)}"


@dataclass(frozen=True)
class UpdateComment:
    path: Path
    comment_id: int
    body: str
    kind = "update_comment"

    def describe(self) -> str:
        return f"update comment {self.comment_id} on {format_path(self.path)}"


@dataclass(frozen=True)
class DeleteComment:
    path: Path
    comment_id: int
    kind = "delete_comment"

    def describe(self) -> str:
        return f"delete comment {self.comment_id} on {format_path(self.path)}"


@dataclass(frozen=True)
class CreateIssue:
    path: Path
    parent_path: Path | None
    title: str
    body: str
    labels: tuple[str, ...] = ()
    kind = "create_issue"

    def describe(self) -> str:
        parent = "" if self.parent_path is None else f" under {format_path(self.parent_path)}"
        return f"create issue {self.title!r} at {format_path(self.path)}{parent}"


@dataclass(frozen=True)
class AddSubIssue:
    parent_path: Path
    child_path: Path
    kind = "add_sub_issue"

    @property
    def path(self) -> Path:
        return self.child_path

    def describe(self) -> str:
        return f"attach {format_path(self.child_path)} to {format_path(self.parent_path)}"


@dataclass(frozen=True)
class RemoveSubIssue:
    parent_path: Path
    child: IssueLink
    kind = "remove_sub_issue"

    @property
    def path(self) -> Path:
        return self.parent_path

    def describe(self) -> str:
        return f"detach #{self.child.number} from {format_path(self.parent_path)}"


RemoteAction = Union[
    UpdateIssueMeta,
    UpdateIssueState,
    UpdateIssueBody,
    CreateComment,
    UpdateComment,
    DeleteComment,
    CreateIssue,
    AddSubIssue,
    RemoveSubIssue,
]


def action_paths(action: RemoteAction) -> list[Path]:
    """Every edited-tree path an action depends on."""
    if isinstance(action, AddSubIssue):
        return [action.parent_path, action.child_path]
    return [action.path]


_PATH_FIELDS = {"path", "parent_path", "child_path"}


def action_to_dict(action: RemoteAction) -> dict[str, Any]:
    out: dict[str, Any] = {"kind": action.kind, "description": action.describe()}
    for name, value in vars(action).items():
        if name in _PATH_FIELDS and value is not None:
            out[name] = format_path(value)
        elif isinstance(value, CloseState):
            out[name] = str(value)
        elif isinstance(value, IssueLink):
            out[name] = value.url
        elif isinstance(value, tuple):
            out[name] = list(value)
        else:
            out[name] = value
    return out


@dataclass
class Plan:
    actions: list[RemoteAction] = field(default_factory=list)
    conflicts: list[IdentityMismatch] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.actions and not self.conflicts


class Reconciler:
    def __init__(self, edited: Issue, base: Issue | None, detached: Sequence[Issue] = ()) -> None:
        self.edited = edited
        self.base = base
        self.detached = list(detached)
        self.actions: list[RemoteAction] = []
        self.conflicts: list[IdentityMismatch] = []
        self._seen: set[IssueLink] = set()

    def run(self) -> Plan:
        root = self.edited
        if isinstance(root.meta.identity, Pending):
            self._create((), None, root)
        elif self.base is None or self.base.meta.identity != root.meta.identity:
            self._conflict((), "root issue does not match the last synced snapshot; pull first")
        else:
            self._diff((), root, self.base)
        return Plan(self.actions, self.conflicts)

    # --- helpers --------------------------------------------------------
    def _conflict(self, path: Path, message: str) -> None:
        self.conflicts.append(IdentityMismatch(f"{format_path(path)}: {message}", path=path))

    def _claim(self, path: Path, node: Issue) -> bool:
        link = node.link
        if link is None:
            return True
        if link in self._seen:
            self._conflict(path, f"{link.url} appears more than once")
            return False
        self._seen.add(link)
        return True

    def _unknown_comment_ids(self, node: Issue, base: Issue) -> list[int]:
        known = {c.identity.comment_id for c in base.true_comments if isinstance(c.identity, LinkedComment)}
        return [
            c.identity.comment_id
            for c in node.true_comments
            if isinstance(c.identity, LinkedComment) and c.identity.comment_id not in known
        ]

    def _find_base(self, node: Issue) -> Issue | None:
        trees = [self.base, *self.detached] if self.base is not None else self.detached
        for tree in trees:
            found = tree.find(node.meta.identity)
            if found is not None:
                return found
        return None

    # --- matched nodes --------------------------------------------------
    def _diff(self, path: Path, node: Issue, base: Issue) -> None:
        if node.is_stub or base.is_stub:
            return
        if not self._claim(path, node):
            return
        unknown = self._unknown_comment_ids(node, base)
        if unknown:
            ids = ", ".join(str(i) for i in unknown)
            self._conflict(path, f"comment id(s) {ids} unknown to the last synced snapshot")
            return
        self._diff_meta(path, node, base)
        if node.body() != base.body():
            self.actions.append(UpdateIssueBody(path, node.body()))
        self._diff_comments(path, node, base)
        self._diff_children(path, node, base)

    def _diff_meta(self, path: Path, node: Issue, base: Issue) -> None:
        title = node.meta.title if node.meta.title != base.meta.title else None
        labels = tuple(node.labels) if node.label_set != base.label_set else None
        if title is not None or labels is not None:
            self.actions.append(UpdateIssueMeta(path, title, labels))
        if node.meta.close_state != base.meta.close_state:
            self.actions.append(UpdateIssueState(path, node.meta.close_state))

    def _diff_comments(self, path: Path, node: Issue, base: Issue) -> None:
        base_text = {
            c.identity.comment_id: c.text for c in base.true_comments if isinstance(c.identity, LinkedComment)
        }
        kept: set[int] = set()
        for index, comment in enumerate(node.comments):
            ident = comment.identity
            if isinstance(ident, PendingComment):
                self.actions.append(CreateComment(path, index, comment.text))
            elif isinstance(ident, LinkedComment):
                kept.add(ident.comment_id)
                if base_text[ident.comment_id] != comment.text:
                    self.actions.append(UpdateComment(path, ident.comment_id, comment.text))
        for comment_id in base_text:
            if comment_id not in kept:
                self.actions.append(DeleteComment(path, comment_id))

    def _diff_children(self, path: Path, node: Issue, base: Issue) -> None:
        base_children = {child.link: child for child in base.children if child.link is not None}
        for idx, child in enumerate(node.children):
            child_path = (*path, idx)
            ident = child.meta.identity
            if isinstance(ident, Pending):
                self._create(child_path, path, child)
            elif ident.link in base_children:
                self._diff(child_path, child, base_children[ident.link])
            else:
                self._adopt(child_path, path, child)
        for link, base_child in base_children.items():
            if base_child.is_stub:
                continue
            if self.edited.find(Linked(link)) is None:
                self.actions.append(RemoveSubIssue(path, link))

    def _adopt(self, path: Path, parent_path: Path, node: Issue) -> None:
        """A linked node that moved under a different parent, or was never attached."""
        if node.is_stub:
            return
        previous = self._find_base(node)
        if previous is None:
            self._conflict(path, f"{node.link} is not part of the last synced snapshot")
            return
        conflicts_before = len(self.conflicts)
        self._diff(path, node, previous)
        if len(self.conflicts) == conflicts_before:
            self.actions.append(AddSubIssue(parent_path, path))

    # --- new nodes ------------------------------------------------------
    def _create(self, path: Path, parent_path: Path | None, node: Issue) -> None:
        self.actions.append(
            CreateIssue(
                path=path,
                parent_path=parent_path,
                title=node.meta.title,
                body=node.body(),
                labels=tuple(node.labels),
            )
        )
        # created open, closed by its own action
        if node.meta.close_state.is_closed:
            self.actions.append(UpdateIssueState(path, node.meta.close_state))
        for index, comment in enumerate(node.comments):
            if index:
                self.actions.append(CreateComment(path, index, comment.text))
        for idx, child in enumerate(node.children):
            child_path = (*path, idx)
            if isinstance(child.meta.identity, Pending):
                self._create(child_path, path, child)
            else:
                self._adopt(child_path, path, child)
        if parent_path is not None:
            self.actions.append(AddSubIssue(parent_path, path))


def plan(edited: Issue, last_synced: Issue | None, detached: Sequence[Issue] = ()) -> Plan:
    return Reconciler(edited, last_synced, detached).run()


def reconcile(edited: Issue, last_synced: Issue | None) -> list[RemoteAction]:
    """Ordered remote actions turning ``last_synced`` into ``edited``."""
    return plan(edited, last_synced).actions


def format_plan(result: Plan) -> list[str]:  # return list of human lines
    lines: list[str] = []
    if result.empty:
        lines.append("[plan] No changes to push")
        return lines
    lines.append(f"[plan] Actions: {len(result.actions)} (conflicts={len(result.conflicts)})")
    for action in result.actions:
        lines.append(f"  {action.kind}: {action.describe()}")
    for conflict in result.conflicts:
        lines.append(f"  conflict: {conflict}")
    return lines


__all__ = [
    "AddSubIssue",
    "CreateComment",
    "CreateIssue",
    "DeleteComment",
    "Plan",
    "Reconciler",
    "RemoteAction",
    "RemoveSubIssue",
    "UpdateComment",
    "UpdateIssueBody",
    "UpdateIssueMeta",
    "UpdateIssueState",
    "action_paths",
    "action_to_dict",
    "format_plan",
    "plan",
    "reconcile",
]
