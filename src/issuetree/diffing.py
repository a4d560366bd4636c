from __future__ import annotations

import difflib
from typing import Any

from .errors import format_path
from .models import LinkedComment, identity_label
from .tree import Issue

MAX_BODY_DIFF_LINES = 120


def _comment_map(issue: Issue) -> dict[int, str]:
    return {c.identity.comment_id: c.text for c in issue.true_comments if isinstance(c.identity, LinkedComment)}


def body_diff(old: str, new: str) -> list[str]:
    diff_lines = list(difflib.unified_diff(old.splitlines(), new.splitlines(), lineterm="", n=3))
    if len(diff_lines) > MAX_BODY_DIFF_LINES:
        diff_lines = diff_lines[:MAX_BODY_DIFF_LINES] + ["... (truncated)"]
    return diff_lines


def content_changed(current: Issue, previous: Issue) -> bool:
    """Whether title, state, labels, body or comment texts differ (children ignored)."""
    return bool(compute_diff(current, previous))


def compute_diff(new: Issue, old: Issue) -> dict[str, Any]:
    """Field-level differences of a single node (children are not compared)."""
    d: dict[str, Any] = {}
    if new.meta.title != old.meta.title:
        d["title_from"] = old.meta.title
        d["title_to"] = new.meta.title
    if new.label_set != old.label_set:
        d["labels_added"] = sorted(new.label_set - old.label_set)
        d["labels_removed"] = sorted(old.label_set - new.label_set)
    if new.meta.close_state != old.meta.close_state:
        d["state_from"] = str(old.meta.close_state)
        d["state_to"] = str(new.meta.close_state)
    old_body, new_body = old.body(), new.body()
    if old_body != new_body:
        d["body_changed"] = True
        d["body_diff"] = body_diff(old_body, new_body)
    old_comments, new_comments = _comment_map(old), _comment_map(new)
    added = sum(1 for c in new.true_comments if not isinstance(c.identity, LinkedComment))
    updated = sorted(cid for cid, text in new_comments.items() if cid in old_comments and old_comments[cid] != text)
    removed = sorted(cid for cid in old_comments if cid not in new_comments)
    if added:
        d["comments_added"] = added
    if updated:
        d["comments_updated"] = updated
    if removed:
        d["comments_removed"] = removed
    return d


def tree_diff(edited: Issue, base: Issue | None) -> list[dict[str, Any]]:
    """Flat per-node report: ``new`` nodes, ``changed`` nodes and ``removed`` links."""
    entries: list[dict[str, Any]] = []
    seen: set[str] = set()
    for path, node in edited.flatten():
        if node.is_stub:
            continue
        previous = base.find(node.meta.identity) if base is not None else None
        if previous is None:
            entries.append({"kind": "new", "path": format_path(path), "title": node.meta.title})
            continue
        seen.add(identity_label(node.meta.identity))
        changes = compute_diff(node, previous)
        if changes:
            entries.append(
                {
                    "kind": "changed",
                    "path": format_path(path),
                    "issue": identity_label(node.meta.identity),
                    "title": node.meta.title,
                    "changes": changes,
                }
            )
    if base is not None:
        for _, node in base.flatten():
            label = identity_label(node.meta.identity)
            if node.link is None or node.is_stub or label in seen:
                continue
            if edited.find(node.meta.identity) is None:
                entries.append({"kind": "removed", "issue": label, "title": node.meta.title})
    return entries


def format_diff(entries: list[dict[str, Any]]) -> list[str]:
    if not entries:
        return ["[diff] No local changes"]
    lines = [f"[diff] Changed nodes: {len(entries)}"]
    for entry in entries:
        kind = entry["kind"]
        if kind == "new":
            lines.append(f"  new: {entry['path']} :: {entry['title']}")
        elif kind == "removed":
            lines.append(f"  removed: {entry['issue']} :: {entry['title']}")
        else:
            changes = entry["changes"]
            keys = ",".join(sorted(k for k in changes if k != "body_diff"))
            lines.append(f"  changed: {entry['path']} {entry['issue']} fields_changed=[{keys}]")
            lines.extend(f"    {line}" for line in changes.get("body_diff", []))
    return lines


__all__ = [
    "MAX_BODY_DIFF_LINES",
    "body_diff",
    "compute_diff",
    "content_changed",
    "format_diff",
    "tree_diff",
]
