"""Execution of a reconcile plan against an :class:`~issuetree.remote.IssueClient`.

Actions run strictly in plan order. When one fails, its node becomes a failed
subtree root: every later action at or below that path is skipped, while
sibling subtrees carry on. Identities returned by create calls are written
back into the edited tree as soon as they are known.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import (
    ErrorInfo,
    IdentityMismatch,
    IssueTreeError,
    RemoteActionFailed,
    RemoteError,
    classify_error,
    format_path,
)
from .logging import StructuredLogger, get_logger
from .models import IssueLink, Linked, LinkedComment, RepoRef
from .reconcile import (
    AddSubIssue,
    CreateComment,
    CreateIssue,
    DeleteComment,
    RemoteAction,
    RemoveSubIssue,
    UpdateComment,
    UpdateIssueBody,
    UpdateIssueMeta,
    UpdateIssueState,
    action_paths,
    action_to_dict,
    plan,
)
from .remote import CreatedIssue, IssueClient
from .tree import Issue, Path


def _under(path: Path, root: Path) -> bool:
    return path[: len(root)] == root


def _minimal(paths: list[Path]) -> list[Path]:
    out: list[Path] = []
    for path in sorted(set(paths), key=lambda p: (len(p), p)):
        if not any(_under(path, kept) for kept in out):
            out.append(path)
    return sorted(out)


@dataclass
class FailedAction:
    action: RemoteAction
    error: ErrorInfo

    def to_dict(self) -> dict[str, Any]:
        return {"action": action_to_dict(self.action), "error": self.error.to_dict()}


@dataclass
class PushResult:
    applied: list[RemoteAction] = field(default_factory=list)
    failed: list[FailedAction] = field(default_factory=list)
    skipped: list[RemoteAction] = field(default_factory=list)
    conflicts: list[IdentityMismatch] = field(default_factory=list)
    planned: list[RemoteAction] = field(default_factory=list)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped and not self.conflicts

    @property
    def failed_subtrees(self) -> list[Path]:
        roots = [f.action.path for f in self.failed]
        roots.extend(c.path for c in self.conflicts)
        return _minimal(roots)

    @property
    def succeeded_subtrees(self) -> list[Path]:
        failed = self.failed_subtrees
        touched = [p for action in self.applied for p in action_paths(action)]
        clean = [p for p in touched if not any(_under(f, p) or _under(p, f) for f in failed)]
        return _minimal(clean)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "dry_run": self.dry_run,
            "planned": [action_to_dict(a) for a in self.planned],
            "applied": [action_to_dict(a) for a in self.applied],
            "failed": [f.to_dict() for f in self.failed],
            "skipped": [action_to_dict(a) for a in self.skipped],
            "conflicts": [{"path": format_path(c.path), "message": str(c)} for c in self.conflicts],
            "failed_subtrees": [format_path(p) for p in self.failed_subtrees],
            "succeeded_subtrees": [format_path(p) for p in self.succeeded_subtrees],
        }


class Pusher:
    def __init__(
        self,
        client: IssueClient,
        *,
        default_repo: RepoRef | None = None,
        current_user: str | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.client = client
        self.default_repo = default_repo
        self.current_user = current_user
        self.logger = logger or get_logger()

    def push(
        self,
        edited: Issue,
        last_synced: Issue | None,
        *,
        detached: Sequence[Issue] = (),
        dry_run: bool = False,
    ) -> PushResult:
        result_plan = plan(edited, last_synced, detached)
        result = PushResult(conflicts=list(result_plan.conflicts), planned=list(result_plan.actions), dry_run=dry_run)
        for conflict in result.conflicts:
            self.logger.warning("identity conflict", path=format_path(conflict.path), error=str(conflict))
        if dry_run:
            for action in result_plan.actions:
                self.logger.log_action(action.kind, format_path(action.path), dry_run=True)
            return result

        failed_roots: list[Path] = []
        for action in result_plan.actions:
            if any(_under(p, root) for p in action_paths(action) for root in failed_roots):
                result.skipped.append(action)
                continue
            try:
                number = self._apply(action, edited)
            except IssueTreeError as exc:
                info = classify_error(exc)
                failed_roots.append(action.path)
                result.failed.append(FailedAction(action, info))
                if isinstance(exc, IdentityMismatch) or info.category == "identity_mismatch":
                    result.conflicts.append(IdentityMismatch(str(exc), path=action.path))
                self.logger.log_error(
                    f"{action.describe()} failed",
                    error=info.message,
                    category=info.category,
                    path=format_path(action.path),
                )
                continue
            result.applied.append(action)
            self.logger.log_action(action.kind, format_path(action.path), issue_number=number)
        return result

    # --- execution ------------------------------------------------------
    def _link(self, edited: Issue, path: Path) -> IssueLink:
        node = edited.node_at(path)
        link = node.link
        if link is None:
            raise IdentityMismatch(f"{format_path(path)} has no remote identity yet", path=path)
        return link

    def _apply(self, action: RemoteAction, edited: Issue) -> int | None:  # noqa: C901 - flat dispatch
        try:
            if isinstance(action, CreateIssue):
                return self._create_issue(action, edited)
            if isinstance(action, AddSubIssue):
                child = self._link(edited, action.child_path)
                self.client.add_sub_issue(self._link(edited, action.parent_path), child)
                return child.number
            if isinstance(action, RemoveSubIssue):
                self.client.remove_sub_issue(self._link(edited, action.parent_path), action.child)
                return action.child.number
            link = self._link(edited, action.path)
            if isinstance(action, UpdateIssueMeta):
                labels = list(action.labels) if action.labels is not None else None
                self.client.update_issue_meta(link, title=action.title, labels=labels)
            elif isinstance(action, UpdateIssueState):
                state = action.close_state
                self.client.update_issue_state(link, state.to_remote_state(), state.to_remote_state_reason())
            elif isinstance(action, UpdateIssueBody):
                self.client.update_issue_body(link, action.body)
            elif isinstance(action, CreateComment):
                comment_id = self.client.create_comment(link, action.body)
                comment = edited.node_at(action.path).comments[action.index]
                comment.identity = LinkedComment(comment_id)
                comment.author = comment.author or self.current_user
            elif isinstance(action, UpdateComment):
                self.client.update_comment(link, action.comment_id, action.body)
            elif isinstance(action, DeleteComment):
                self.client.delete_comment(link, action.comment_id)
            return link.number
        except RemoteError as exc:
            if exc.status in (404, 410):
                message = f"{action.describe()}: remote target no longer exists"
                raise IdentityMismatch(message, path=action.path) from exc
            raise RemoteActionFailed(action, exc) from exc

    def _create_issue(self, action: CreateIssue, edited: Issue) -> int:
        if action.parent_path is not None:
            repo = self._link(edited, action.parent_path).repo_ref
        elif self.default_repo is not None:
            repo = self.default_repo
        else:
            raise IssueTreeError("no repository configured for a new root issue")
        try:
            created = self.client.create_issue(
                repo, title=action.title, body=action.body, labels=list(action.labels)
            )
        except RemoteError as exc:
            if not classify_error(exc).transient:
                raise
            # the earlier attempt may have landed; adopt it instead of creating twice
            existing = self.client.find_issue_by_title(repo, action.title)
            if existing is None:
                raise
            self.logger.warning("adopting issue created by a failed attempt", issue_number=existing.number)
            fallback = IssueLink(repo.owner, repo.repo, existing.number)
            created = CreatedIssue(existing.id, existing.number, existing.link(fallback).url)
        node = edited.node_at(action.path)
        node.meta.identity = Linked(created.link)
        if self.current_user is not None:
            node.meta.author = node.meta.author or self.current_user
            node.meta.owned = node.meta.author == self.current_user
            node.comments[0].author = node.meta.author
        return created.number


__all__ = ["FailedAction", "PushResult", "Pusher"]
