from __future__ import annotations

from pathlib import Path

import pytest

from issuetree.config import ConfigError, default_config
from issuetree.core import IssueTreeSync, get_mock_client, parse_issue_url
from issuetree.errors import IssueTreeError, RemoteError, StaleBase
from issuetree.mock_github import MockGitHub
from issuetree.models import PENDING_COMMENT, CloseReason, CloseState, Comment
from issuetree.parser import load_local, render
from issuetree.tree import Issue

REPO = "acme/widgets"


@pytest.fixture
def gh() -> MockGitHub:
    gh = MockGitHub(user="alice")
    root = gh.seed_issue(REPO, "Root", "intro\n1. setup", comments=[("bob", "hello")])
    gh.seed_issue(REPO, "A", "a", parent=root)
    gh.seed_issue(REPO, "B", "b", parent=root)
    return gh


@pytest.fixture
def sync(tmp_path: Path, gh: MockGitHub) -> IssueTreeSync:
    cfg = default_config(tmp_path)
    cfg.github_repo = REPO
    return IssueTreeSync(cfg, client=gh)


def _edit(path: Path, fn) -> None:
    tree = load_local(path.read_text())
    fn(tree)
    path.write_text(render(tree))


def test_pull_writes_file_and_snapshot(sync: IssueTreeSync, gh: MockGitHub, tmp_path: Path):
    path = sync.pull("https://github.com/acme/widgets/issues/1")

    assert path == tmp_path / "issues" / "acme" / "widgets" / "1.md"
    tree = load_local(path.read_text())
    assert tree.meta.title == "Root"
    assert tree.meta.owned is True
    assert [c.meta.title for c in tree.children] == ["A", "B"]
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    assert sync.snapshots.load(link) == tree


def test_pull_rejects_non_issue_urls(sync: IssueTreeSync):
    with pytest.raises(IssueTreeError):
        sync.pull("https://github.com/acme/widgets/pull/1")


def test_push_file_round_trip(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")

    def _change(tree: Issue) -> None:
        tree.children[0].meta.title = "A v2"
        tree.comments[1].text = "hello, edited"
        tree.blockers.complete_current()

    _edit(path, _change)
    result = sync.push_file(path)

    assert result.ok
    assert len(result.applied) == 3
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    assert gh.issue(link).body == "intro\n1. [x] setup"
    fresh = sync.ingest(link)
    assert path.read_text() == render(fresh)
    assert sync.snapshots.load(link) == fresh
    # nothing left to do
    assert sync.push_file(path).applied == []


def test_new_child_in_file_is_created(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    _edit(path, lambda tree: tree.children[1].children.append(Issue.pending("B1", "fresh")))

    result = sync.push_file(path)

    assert result.ok
    tree = load_local(path.read_text())
    created = tree.children[1].children[0]
    assert created.link is not None
    assert created.meta.author == "alice"
    assert gh.issue(created.link).body == "fresh"


def test_stale_remote_blocks_push(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    a_link = gh.sub_issue_links(link)[0]
    gh.update_issue_body(a_link, "changed on the web")
    _edit(path, lambda tree: setattr(tree.meta, "title", "Root v2"))

    with pytest.raises(StaleBase) as excinfo:
        sync.push_file(path)
    assert excinfo.value.paths == [(0,)]
    assert gh.issue(link).title == "Root"

    forced = sync.push_file(path, force=True)
    assert forced.ok
    assert gh.issue(link).title == "Root v2"


def test_timestamp_only_change_is_not_stale(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    gh.touch(link)
    _edit(path, lambda tree: setattr(tree.meta, "title", "Root v2"))

    assert sync.push_file(path).ok


def test_partial_failure_keeps_edits_and_retries_only_failures(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    a_link, _ = gh.sub_issue_links(link)

    def _change(tree: Issue) -> None:
        tree.children[0].meta.title = "A v2"
        tree.children[1].meta.title = "B v2"

    _edit(path, _change)
    gh.fail("update_issue_meta", number=a_link.number)

    first = sync.push_file(path)

    assert not first.ok
    assert first.failed_subtrees == [(0,)]
    on_disk = load_local(path.read_text())
    assert [c.meta.title for c in on_disk.children] == ["A v2", "B v2"]
    snapshot = sync.snapshots.load(link)
    assert snapshot is not None
    assert [c.meta.title for c in snapshot.children] == ["A", "B v2"]

    second = sync.push_file(path)

    assert second.ok
    assert [type(a).__name__ for a in second.applied] == ["UpdateIssueMeta"]
    assert gh.issue(a_link).title == "A v2"


def test_dry_run_changes_nothing(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    _edit(path, lambda tree: setattr(tree.meta, "title", "Root v2"))
    before = path.read_text()
    mutations = len(gh.calls_to("update_issue_meta"))

    result = sync.push_file(path, dry_run=True)

    assert result.dry_run
    assert [a.kind for a in result.planned] == ["update_issue_meta"]
    assert len(gh.calls_to("update_issue_meta")) == mutations
    assert path.read_text() == before


def test_new_root_file_is_created_in_default_repo(sync: IssueTreeSync, gh: MockGitHub, tmp_path: Path):
    path = tmp_path / "draft.md"
    path.write_text("# [ ] Brand new\nplan\n1. first step\n")

    result = sync.push_file(path)

    assert result.ok
    tree = load_local(path.read_text())
    assert tree.link is not None
    assert tree.link.repo_ref.slug == REPO
    assert sync.snapshots.load(tree.link) is not None
    assert tree.body() == "plan\n1. first step"


def test_current_user_falls_back_to_client(sync: IssueTreeSync):
    assert sync.current_user == "alice"


def test_configured_user_wins(tmp_path: Path, gh: MockGitHub):
    cfg = default_config(tmp_path)
    cfg.github_user = "configured"
    engine = IssueTreeSync(cfg, client=gh)
    assert engine.current_user == "configured"
    assert gh.calls_to("fetch_authenticated_user") == []


def test_mock_mode_uses_shared_client(tmp_path: Path, mock_github: MockGitHub):
    engine = IssueTreeSync(default_config(tmp_path))
    assert engine.client is get_mock_client()
    assert engine.client is mock_github


def test_missing_token_outside_mock_mode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("ISSUETREE_MOCK")
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigError) as excinfo:
        IssueTreeSync(default_config(tmp_path))
    assert "No GitHub token found" in str(excinfo.value)


def test_from_config_path(tmp_path: Path):
    config = tmp_path / "issuetree.config.yaml"
    config.write_text("version: 1\ngithub:\n  repo: acme/widgets\n  user: bob\n")
    engine = IssueTreeSync.from_config_path(config)
    assert engine.cfg.github_repo == REPO
    assert engine.current_user == "bob"


def test_attach_failure_is_retried_on_next_push(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")

    def _add(tree: Issue) -> None:
        child = Issue.pending("C", "new child")
        child.comments.append(Comment(PENDING_COMMENT, None, "first note"))
        tree.children.append(child)

    _edit(path, _add)
    gh.fail("add_sub_issue")

    first = sync.push_file(path)

    assert not first.ok
    assert first.failed_subtrees == [(2,)]
    created = load_local(path.read_text()).children[2]
    assert created.link is not None
    assert created.link not in gh.sub_issue_links(link)
    assert [d.link for d in sync.snapshots.load_detached(link)] == [created.link]

    second = sync.push_file(path)

    assert second.ok
    assert second.conflicts == []
    assert [a.kind for a in second.applied] == ["add_sub_issue"]
    assert gh.sub_issue_links(link)[-1] == created.link
    assert len(gh.calls_to("create_issue")) == 1
    assert sync.snapshots.load_detached(link) == []
    assert sync.push_file(path).applied == []


def test_failed_close_of_new_issue_does_not_duplicate_it(sync: IssueTreeSync, gh: MockGitHub):
    path = sync.pull("https://github.com/acme/widgets/issues/1")
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")

    def _add(tree: Issue) -> None:
        done = Issue.pending("Done already")
        done.meta.close_state = CloseState.closed(CloseReason.NOT_PLANNED)
        tree.children.append(done)

    _edit(path, _add)
    gh.fail("update_issue_state", RemoteError("validation failed", status=422))

    first = sync.push_file(path)

    assert [a.kind for a in first.applied] == ["create_issue"]
    assert [f.action.kind for f in first.failed] == ["update_issue_state"]
    created = load_local(path.read_text()).children[2]
    assert created.link is not None

    second = sync.push_file(path)

    assert second.ok
    assert [a.kind for a in second.applied] == ["update_issue_state", "add_sub_issue"]
    assert len(gh.calls_to("create_issue")) == 1
    assert gh.issue(created.link).state_reason == "not_planned"
    assert gh.sub_issue_links(link)[-1] == created.link


def test_structure_like_remote_text_survives_the_cycle(sync: IssueTreeSync, gh: MockGitHub):
    link = parse_issue_url("https://github.com/acme/widgets/issues/1")
    gh.update_issue_body(link, "notes\n## [ ] looks like a task\nmore")
    gh.create_comment(link, "try this\n!c\nok")
    path = sync.pull(link)

    tree = load_local(path.read_text())

    assert tree == sync.ingest(link)
    assert [c.meta.title for c in tree.children] == ["A", "B"]
    assert sync.push_file(path).applied == []
