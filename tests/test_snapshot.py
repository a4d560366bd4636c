from __future__ import annotations

import json
from pathlib import Path

import pytest

from issuetree.ingest import ingest
from issuetree.mock_github import MockGitHub
from issuetree.models import IssueLink
from issuetree.schemas import get_schemas, validate_document
from issuetree.snapshot import SnapshotStore, compute_signature
from issuetree.tree import Issue


def _tree() -> tuple[IssueLink, Issue]:
    gh = MockGitHub(user="alice")
    root = gh.seed_issue("acme/widgets", "Root", "intro\n1. setup\n2.a docs", comments=[("bob", "hi")])
    gh.seed_issue("acme/widgets", "Child", "", parent=root, state="closed", state_reason="duplicate")
    return root, ingest(gh, root, current_user="alice")


def test_save_and_load_round_trip(tmp_path: Path):
    link, tree = _tree()
    store = SnapshotStore(tmp_path)
    path = store.save(tree)

    assert path == tmp_path / "acme" / "widgets" / "1.json"
    assert store.load(link) == tree
    document = json.loads(path.read_text())
    assert validate_document("snapshot", document) == []
    assert document["signature"] == compute_signature(document["tree"])
    assert not list(path.parent.glob("*.tmp"))


def test_missing_snapshot_is_none(tmp_path: Path):
    assert SnapshotStore(tmp_path).load(IssueLink("acme", "widgets", 5)) is None


def test_tampered_snapshot_is_ignored(tmp_path: Path):
    link, tree = _tree()
    store = SnapshotStore(tmp_path)
    path = store.save(tree)
    document = json.loads(path.read_text())
    document["tree"]["title"] = "edited by hand"
    path.write_text(json.dumps(document))

    assert store.load(link) is None


def test_schema_invalid_snapshot_is_ignored(tmp_path: Path):
    link, tree = _tree()
    store = SnapshotStore(tmp_path)
    path = store.save(tree)
    document = json.loads(path.read_text())
    del document["tree"]["comments"]
    document["signature"] = compute_signature(document["tree"])
    path.write_text(json.dumps(document))
    assert store.load(link) is None


def test_unreadable_snapshot_is_ignored(tmp_path: Path):
    link, tree = _tree()
    store = SnapshotStore(tmp_path)
    store.save(tree).write_text("{not json")
    assert store.load(link) is None


def test_pending_root_cannot_be_saved(tmp_path: Path):
    with pytest.raises(ValueError):
        SnapshotStore(tmp_path).save(Issue.pending("x"))


def test_detached_subtrees_round_trip(tmp_path: Path):
    link, tree = _tree()
    gh = MockGitHub(user="alice")
    orphan_link = gh.seed_issue("acme/gadgets", "Orphan", "created, not attached")
    orphan = ingest(gh, orphan_link, current_user="alice")
    store = SnapshotStore(tmp_path)
    path = store.save(tree, detached=[orphan])

    assert store.load(link) == tree
    assert store.load_detached(link) == [orphan]
    document = json.loads(path.read_text())
    assert validate_document("snapshot", document) == []
    assert document["signature"] == compute_signature({"tree": document["tree"], "detached": document["detached"]})

    store.save(tree)
    assert store.load_detached(link) == []
    assert "detached" not in json.loads(path.read_text())


def test_tampered_detached_entries_are_ignored(tmp_path: Path):
    link, tree = _tree()
    store = SnapshotStore(tmp_path)
    path = store.save(tree, detached=[tree.children[0]])
    document = json.loads(path.read_text())
    document["detached"][0]["title"] = "edited by hand"
    path.write_text(json.dumps(document))

    assert store.load(link) is None
    assert store.load_detached(link) == []


def test_schema_catalogue():
    schemas = get_schemas()
    assert set(schemas) == {"snapshot"}
    assert schemas["snapshot"]["$schema"].startswith("http://json-schema.org/draft-07")
    assert validate_document("snapshot", {"version": 1})
