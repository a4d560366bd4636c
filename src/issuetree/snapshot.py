"""Persistent last-synced snapshots.

One signed JSON document per root issue at
``<snapshot_dir>/<owner>/<repo>/<number>.json``. Documents are replaced
whole (tmp file + rename). A document that fails schema validation, or whose
signature does not match its tree, is ignored with a warning and treated as
"no snapshot".

Besides the tree, a document may carry ``detached`` subtrees: issues a push
created but could not attach to their parent yet. They stay known to the
reconciler until a later push attaches them.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import IssueLink
from .schemas import SNAPSHOT_VERSION, validate_document
from .tree import Issue, issue_from_dict, to_dict

logger = logging.getLogger(__name__)


def compute_signature(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def _signed_payload(tree: dict[str, Any], detached: list[dict[str, Any]]) -> Any:
    if not detached:
        return tree
    return {"tree": tree, "detached": detached}


@dataclass
class SnapshotDocument:
    root: IssueLink
    tree: dict[str, Any]
    detached: list[dict[str, Any]] = field(default_factory=list)
    version: int = SNAPSHOT_VERSION
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    signature: str = ""

    def ensure_signature(self) -> None:
        self.signature = compute_signature(_signed_payload(self.tree, self.detached))

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "version": self.version,
            "generated_at": self.generated_at,
            "root": self.root.url,
            "tree": self.tree,
            "signature": self.signature or compute_signature(_signed_payload(self.tree, self.detached)),
        }
        if self.detached:
            out["detached"] = self.detached
        return out


class SnapshotStore:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, link: IssueLink) -> Path:
        return self.directory / link.owner / link.repo / f"{link.number}.json"

    def save(self, issue: Issue, detached: Sequence[Issue] = ()) -> Path:
        link = issue.link
        if link is None:
            raise ValueError("cannot snapshot a tree whose root has no remote identity")
        document = SnapshotDocument(root=link, tree=to_dict(issue), detached=[to_dict(d) for d in detached])
        document.ensure_signature()
        path = self.path_for(link)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(document.to_json(), indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
        return path

    def _read(self, link: IssueLink) -> dict[str, Any] | None:
        path = self.path_for(link)
        if not path.exists():
            return None
        try:
            raw: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable snapshot %s ignored: %s", path, exc)
            return None
        errors = validate_document("snapshot", raw)
        if errors:
            logger.warning("Invalid snapshot %s ignored: %s", path, "; ".join(errors[:3]))
            return None
        if raw["signature"] != compute_signature(_signed_payload(raw["tree"], raw.get("detached", []))):
            logger.warning("Snapshot signature mismatch detected at %s; ignoring snapshot", path)
            return None
        if raw["root"] != link.url:
            logger.warning("Snapshot %s belongs to %s; ignoring snapshot", path, raw["root"])
            return None
        return raw

    def load(self, link: IssueLink) -> Issue | None:
        raw = self._read(link)
        if raw is None:
            return None
        try:
            issue = issue_from_dict(raw["tree"])
        except ValueError as exc:
            logger.warning("Invalid snapshot %s ignored: %s", self.path_for(link), exc)
            return None
        if issue.link != link:
            logger.warning("Snapshot %s belongs to %s; ignoring snapshot", self.path_for(link), raw["root"])
            return None
        return issue

    def load_detached(self, link: IssueLink) -> list[Issue]:
        """Subtrees created by an earlier push that are not attached yet."""
        raw = self._read(link)
        if raw is None:
            return []
        try:
            return [issue_from_dict(entry) for entry in raw.get("detached", [])]
        except ValueError as exc:
            logger.warning("Invalid detached entries in %s ignored: %s", self.path_for(link), exc)
            return []


__all__ = ["SnapshotDocument", "SnapshotStore", "compute_signature"]
