"""Sync engine: the pull → edit → push cycle.

``IssueTreeSync`` wires configuration, logging, the tracker client and the
snapshot store around the pure pieces (ingest, parser, reconcile, push).
The local file is only written at the two translation boundaries: after an
ingest (``pull``) and after a push (``push_file``). It is re-read from disk
before every push.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path

from . import parser
from .concurrency import ConcurrencyConfig
from .config import ConfigError, SyncConfig
from .diffing import content_changed
from .env_auth import EnvAuthConfig, create_env_auth_manager
from .errors import IssueTreeError, RemoteError, StaleBase, format_path, redact
from .github_rest import GitHubRestClient
from .ingest import fetch_remote_tree, translate
from .logging import configure_logging
from .mock_github import MockGitHub
from .models import IssueLink
from .push import Pusher, PushResult
from .reconcile import CreateIssue, Plan, plan
from .remote import IssueClient
from .retry import RetryConfig
from .snapshot import SnapshotStore
from .tree import Issue, Path as TreePath

_MOCK_CLIENT: MockGitHub | None = None


def get_mock_client() -> MockGitHub:
    """Process-wide in-memory tracker used when ``ISSUETREE_MOCK=1``."""
    global _MOCK_CLIENT  # noqa: PLW0603
    if _MOCK_CLIENT is None:
        _MOCK_CLIENT = MockGitHub()
    return _MOCK_CLIENT


def reset_mock_client() -> MockGitHub:
    global _MOCK_CLIENT  # noqa: PLW0603
    _MOCK_CLIENT = MockGitHub()
    return _MOCK_CLIENT


def parse_issue_url(url: str) -> IssueLink:
    link = IssueLink.parse(url)
    if link is None:
        raise IssueTreeError(f"not a GitHub issue URL: {url!r}")
    return link


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


class IssueTreeSync:
    def __init__(self, cfg: SyncConfig, client: IssueClient | None = None):
        self.cfg = cfg
        # Mock mode: every remote call goes to the in-memory tracker
        self._mock = os.environ.get("ISSUETREE_MOCK") == "1"
        self._logger = configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
        self._concurrency = ConcurrencyConfig(
            enabled=cfg.concurrency_enabled,
            max_workers=cfg.concurrency_max_workers,
        )
        self._retry = RetryConfig(attempts=cfg.retry_attempts, base_sleep=cfg.retry_base_sleep)
        self._env_auth_manager = create_env_auth_manager(
            EnvAuthConfig(load_dotenv=cfg.env_auth_load_dotenv, dotenv_path=cfg.env_auth_dotenv_path)
        )
        self.client: IssueClient = client if client is not None else self._build_client()
        self.snapshots = SnapshotStore(cfg.snapshot_dir)
        self._current_user: str | None = cfg.github_user
        self._user_resolved = cfg.github_user is not None

    @classmethod
    def from_config_path(cls, path: str | Path) -> IssueTreeSync:
        from .config import load_config  # noqa: PLC0415

        return cls(load_config(path))

    def _build_client(self) -> IssueClient:
        if self._mock:
            self._logger.log_operation("mock_mode_enabled")
            return get_mock_client()
        token = self._env_auth_manager.get_github_token()
        if not token:
            raise ConfigError(
                "No GitHub token found. " + "; ".join(self._env_auth_manager.get_authentication_recommendations())
            )
        return GitHubRestClient(token=token, base_url=self.cfg.github_api_url, retry=self._retry)

    @property
    def current_user(self) -> str | None:
        if not self._user_resolved:
            self._user_resolved = True
            try:
                self._current_user = self.client.fetch_authenticated_user()
            except RemoteError as exc:
                self._logger.warning("could not resolve authenticated user", error=redact(str(exc)))
        return self._current_user

    # --- pure translation entry points -----------------------------------
    def ingest(self, link: IssueLink) -> Issue:
        with self._logger.timed_operation("ingest", issue=link.url):
            remote = fetch_remote_tree(self.client, link, self._concurrency)
            issue = translate(remote, self.current_user)
        for path, node in issue.flatten():
            if node.is_stub:
                self._logger.warning("ingested stub", path=format_path(path), error=node.warning)
        return issue

    def load_local(self, text: str) -> Issue:
        return parser.load_local(text)

    def render(self, issue: Issue) -> str:
        return parser.render(issue)

    def plan(self, edited: Issue, last_synced: Issue | None, detached: Sequence[Issue] = ()) -> Plan:
        return plan(edited, last_synced, detached)

    def check_stale(self, last_synced: Issue) -> Issue:
        """Raise :class:`StaleBase` if the remote changed since ``last_synced``.

        ``updated_at`` is only a hint: a node counts as stale when its
        timestamp moved *and* its content differs. Returns the fresh tree.
        """
        link = last_synced.link
        if link is None:
            raise IssueTreeError("snapshot root has no remote identity")
        fresh = self.ingest(link)
        stale: list[TreePath] = []
        details: list[str] = []
        for path, node in last_synced.flatten():
            if node.is_stub or node.link is None:
                continue
            current = fresh.find(node.meta.identity)
            if current is None or current.is_stub:
                continue
            if current.last_contents_change == node.last_contents_change:
                continue
            if content_changed(current, node):
                stale.append(path)
                details.append(f"{node.link.url} changed remotely")
        if stale:
            raise StaleBase(stale, details)
        return fresh

    def push(
        self,
        edited: Issue,
        last_synced: Issue | None,
        *,
        detached: Sequence[Issue] = (),
        force: bool = False,
        dry_run: bool = False,
    ) -> PushResult:
        if last_synced is not None and not force and not dry_run:
            self.check_stale(last_synced)
        pusher = Pusher(
            self.client,
            default_repo=self.cfg.repo_ref,
            current_user=self.current_user,
            logger=self._logger,
        )
        with self._logger.timed_operation("push", dry_run=dry_run):
            return pusher.push(edited, last_synced, detached=detached, dry_run=dry_run)

    def _unattached(
        self, edited: Issue, fresh: Issue, result: PushResult, detached: Sequence[Issue]
    ) -> list[Issue]:
        """Issues this or an earlier push created that the remote tree does not reach yet."""
        created = {edited.node_at(a.path).link for a in result.applied if isinstance(a, CreateIssue)}
        created.update(d.link for d in detached)
        out: list[Issue] = []
        for _, node in edited.flatten():
            link = node.link
            if link is None or link not in created or fresh.find(node.meta.identity) is not None:
                continue
            if any(d.find(node.meta.identity) is not None for d in out):
                continue
            self._logger.warning("created issue is not attached yet", issue=link.url)
            out.append(self.ingest(link))
        return out

    # --- file-level cycle ------------------------------------------------
    def default_path(self, link: IssueLink) -> Path:
        return self.cfg.issues_dir / link.owner / link.repo / f"{link.number}.md"

    def pull(self, url: str | IssueLink, path: Path | None = None) -> Path:
        link = url if isinstance(url, IssueLink) else parse_issue_url(url)
        issue = self.ingest(link)
        target = path or self.default_path(link)
        self.snapshots.save(issue)
        _write_text(target, self.render(issue))
        self._logger.log_operation("pull", issue=link.url, file=str(target))
        return target

    def push_file(self, path: Path, *, force: bool = False, dry_run: bool = False) -> PushResult:
        # always re-read: the editor owns the file between invocations
        edited = self.load_local(Path(path).read_text(encoding="utf-8"))
        base = self.snapshots.load(edited.link) if edited.link is not None else None
        detached = self.snapshots.load_detached(edited.link) if edited.link is not None else []
        if edited.link is not None and base is None:
            self._logger.warning("no snapshot for linked issue; pull before pushing", issue=edited.link.url)
        result = self.push(edited, base, detached=detached, force=force, dry_run=dry_run)
        if dry_run:
            return result
        link = edited.link
        if link is None:
            # the root create itself failed; keep the user's text
            _write_text(Path(path), self.render(edited))
            return result
        fresh = self.ingest(link)
        self.snapshots.save(fresh, detached=self._unattached(edited, fresh, result, detached))
        _write_text(Path(path), self.render(fresh if result.ok else edited))
        self._logger.log_operation(
            "push_complete",
            ok=result.ok,
            applied=len(result.applied),
            failed=len(result.failed),
            skipped=len(result.skipped),
            conflicts=len(result.conflicts),
        )
        return result


__all__ = ["IssueTreeSync", "get_mock_client", "parse_issue_url", "reset_mock_client"]
