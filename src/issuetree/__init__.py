"""issuetree - edit a GitHub issue and its sub-issue tree as one local text file.

High-level public API:

from issuetree import IssueTreeSync, load_config

sync = IssueTreeSync.from_config_path('issuetree.config.yaml')
path = sync.pull('https://github.com/owner/repo/issues/1')
# ... edit the file ...
result = sync.push_file(path)
print(result.to_dict()['failed_subtrees'])

The pure entry points ``ingest``, ``load_local`` and ``push`` work on
in-memory :class:`Issue` trees and any :class:`IssueClient`.
"""

from __future__ import annotations

from .blockers import BlockerItem, BlockerSequence
from .config import SyncConfig, load_config
from .core import IssueTreeSync
from .errors import IdentityMismatch, IssueTreeError, ParseError, RemoteError, StaleBase
from .ingest import ingest
from .models import CloseReason, CloseState, IssueLink, RepoRef
from .parser import load_local, render
from .push import Pusher, PushResult
from .reconcile import reconcile
from .remote import IssueClient
from .tree import Issue, IssueMeta

__version__ = "0.1.0"


def push(
    client: IssueClient,
    edited: Issue,
    last_synced: Issue | None,
    *,
    default_repo: RepoRef | None = None,
    current_user: str | None = None,
) -> PushResult:
    """Apply ``edited`` on top of ``last_synced`` through ``client`` (no staleness check)."""
    return Pusher(client, default_repo=default_repo, current_user=current_user).push(edited, last_synced)


__all__ = [
    "BlockerItem",
    "BlockerSequence",
    "CloseReason",
    "CloseState",
    "IdentityMismatch",
    "Issue",
    "IssueClient",
    "IssueLink",
    "IssueMeta",
    "IssueTreeError",
    "IssueTreeSync",
    "ParseError",
    "PushResult",
    "RemoteError",
    "StaleBase",
    "SyncConfig",
    "__version__",
    "ingest",
    "load_config",
    "load_local",
    "push",
    "reconcile",
    "render",
]
