from __future__ import annotations

from issuetree.diffing import MAX_BODY_DIFF_LINES, body_diff, compute_diff, content_changed, format_diff, tree_diff
from issuetree.ingest import ingest
from issuetree.mock_github import MockGitHub
from issuetree.models import PENDING_COMMENT, CloseState, Comment
from issuetree.tree import Issue


def _base() -> Issue:
    gh = MockGitHub(user="alice")
    root = gh.seed_issue("acme/widgets", "Root", "intro", labels=["a"], comments=[("bob", "hi")])
    gh.seed_issue("acme/widgets", "Child", "child", parent=root)
    gh.seed_issue("acme/widgets", "Other", "other", parent=root)
    return ingest(gh, root, current_user="alice")


def test_identical_nodes_have_no_diff():
    base = _base()
    assert compute_diff(base.clone(), base) == {}
    assert not content_changed(base.clone(), base)
    assert format_diff(tree_diff(base.clone(), base)) == ["[diff] No local changes"]


def test_field_changes():
    base = _base()
    edited = base.clone()
    edited.meta.title = "Root v2"
    edited.labels = ["b"]
    edited.meta.close_state = CloseState.closed()
    edited.set_body("intro\nmore")
    edited.comments[1].text = "hi there"
    edited.comments.append(Comment(PENDING_COMMENT, None, "new"))

    d = compute_diff(edited, base)

    assert d["title_from"] == "Root"
    assert d["title_to"] == "Root v2"
    assert d["labels_added"] == ["b"]
    assert d["labels_removed"] == ["a"]
    assert d["state_to"] == "closed(completed)"
    assert d["body_changed"] is True
    assert "+more" in d["body_diff"]
    assert d["comments_added"] == 1
    assert len(d["comments_updated"]) == 1


def test_children_are_ignored_by_node_diff():
    base = _base()
    edited = base.clone()
    edited.children.pop()
    assert not content_changed(edited, base)


def test_tree_diff_reports_new_changed_and_removed():
    base = _base()
    edited = base.clone()
    edited.children[0].meta.title = "Child v2"
    removed = edited.children.pop(1)
    edited.children[0].children.append(Issue.pending("Brand new"))

    entries = tree_diff(edited, base)

    kinds = [e["kind"] for e in entries]
    assert kinds == ["changed", "new", "removed"]
    assert entries[1]["path"] == "/0/0"
    assert entries[2]["title"] == removed.meta.title
    lines = format_diff(entries)
    assert lines[0] == "[diff] Changed nodes: 3"
    assert lines[2] == "  new: /0/0 :: Brand new"


def test_without_base_everything_is_new():
    base = _base()
    entries = tree_diff(base, None)
    assert [e["kind"] for e in entries] == ["new", "new", "new"]


def test_body_diff_truncates():
    old = "\n".join(f"line {n}" for n in range(500))
    new = "\n".join(f"LINE {n}" for n in range(500))
    lines = body_diff(old, new)
    assert len(lines) == MAX_BODY_DIFF_LINES + 1
    assert lines[-1] == "... (truncated)"
