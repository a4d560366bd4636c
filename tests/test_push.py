from __future__ import annotations

from issuetree.errors import RemoteError
from issuetree.ingest import ingest
from issuetree.mock_github import MockGitHub
from issuetree.models import PENDING_COMMENT, CloseReason, CloseState, Comment, IssueLink, LinkedComment, RepoRef
from issuetree.push import Pusher
from issuetree.reconcile import CreateIssue, UpdateIssueMeta
from issuetree.tree import Issue

REPO = "acme/widgets"


def _setup() -> tuple[MockGitHub, IssueLink, Issue]:
    gh = MockGitHub(user="alice")
    root = gh.seed_issue(REPO, "Root", "intro", comments=[("bob", "hello")])
    a = gh.seed_issue(REPO, "A", "a", parent=root)
    gh.seed_issue(REPO, "B", "b", parent=root)
    gh.seed_issue(REPO, "A1", "a1", parent=a)
    return gh, root, ingest(gh, root, current_user="alice")


def test_push_applies_changes_and_matches_remote():
    gh, root_link, base = _setup()
    edited = base.clone()
    edited.meta.title = "Root v2"
    edited.children[0].meta.close_state = CloseState.closed(CloseReason.NOT_PLANNED)
    edited.comments[1].text = "hello again"

    result = Pusher(gh, current_user="alice").push(edited, base)

    assert result.ok
    assert len(result.applied) == 3
    fresh = ingest(gh, root_link, current_user="alice")
    assert fresh.meta.title == "Root v2"
    assert fresh.children[0].meta.close_state == CloseState.closed(CloseReason.NOT_PLANNED)
    assert fresh.comments[1].text == "hello again"


def test_created_identities_are_written_back():
    gh, root_link, base = _setup()
    edited = base.clone()
    child = Issue.pending("New", "new body", labels=["docs"])
    child.comments.append(Comment(PENDING_COMMENT, None, "n1"))
    edited.children[1].children.append(child)

    result = Pusher(gh, current_user="alice").push(edited, base)

    assert result.ok
    created = edited.children[1].children[0]
    assert created.link is not None
    assert created.meta.owned is True
    assert created.meta.author == "alice"
    assert isinstance(created.comments[1].identity, LinkedComment)
    b_link = edited.children[1].link
    assert b_link is not None
    assert gh.sub_issue_links(b_link) == [created.link]

    # pushing the written-back tree against a fresh ingest is a no-op
    fresh = ingest(gh, root_link, current_user="alice")
    assert Pusher(gh, current_user="alice").push(edited, fresh).applied == []


def test_failure_skips_subtree_but_not_siblings():
    gh, _, base = _setup()
    edited = base.clone()
    a_link = edited.children[0].link
    assert a_link is not None
    edited.children[0].meta.title = "A v2"
    edited.children[0].children[0].meta.title = "A1 v2"
    edited.children[1].meta.title = "B v2"
    gh.fail("update_issue_meta", number=a_link.number)

    result = Pusher(gh).push(edited, base)

    assert not result.ok
    assert [f.action for f in result.failed] == [UpdateIssueMeta((0,), "A v2", None)]
    assert result.failed[0].error.category == "github.server"
    assert result.skipped == [UpdateIssueMeta((0, 0), "A1 v2", None)]
    assert result.applied == [UpdateIssueMeta((1,), "B v2", None)]
    assert result.failed_subtrees == [(0,)]
    assert result.succeeded_subtrees == [(1,)]
    summary = result.to_dict()
    assert summary["failed_subtrees"] == ["/0"]
    assert summary["ok"] is False


def test_failed_create_skips_dependent_actions():
    gh, _, base = _setup()
    edited = base.clone()
    child = Issue.pending("New")
    child.comments.append(Comment(PENDING_COMMENT, None, "n1"))
    edited.children.append(child)
    gh.fail("create_issue", RemoteError("validation failed", status=422))

    result = Pusher(gh, current_user="alice").push(edited, base)

    assert [type(f.action) for f in result.failed] == [CreateIssue]
    assert len(result.skipped) == 2
    assert edited.children[2].link is None
    assert gh.calls_to("find_issue_by_title") == []


def test_transient_create_failure_adopts_landed_issue():
    gh, _, base = _setup()
    edited = base.clone()
    edited.children.append(Issue.pending("Landed anyway"))

    original_create = gh.create_issue

    def _create_then_fail(repo, **kwargs):
        original_create(repo, **kwargs)
        raise RemoteError("502 bad gateway", status=502)

    gh.create_issue = _create_then_fail  # type: ignore[method-assign]

    result = Pusher(gh, current_user="alice").push(edited, base)

    assert result.ok
    adopted = edited.children[2]
    assert adopted.link is not None
    assert gh.issue(adopted.link).title == "Landed anyway"
    assert len(gh.calls_to("create_issue")) == 1


def test_missing_remote_target_is_an_identity_conflict():
    gh, _, base = _setup()
    edited = base.clone()
    edited.comments[1].text = "edited"
    comment_id = edited.comments[1].identity
    assert isinstance(comment_id, LinkedComment)
    root_link = edited.link
    assert root_link is not None
    gh.delete_comment(root_link, comment_id.comment_id)

    result = Pusher(gh).push(edited, base)

    assert result.failed[0].error.category == "identity_mismatch"
    assert [c.path for c in result.conflicts] == [()]


def test_new_root_uses_default_repo():
    gh = MockGitHub(user="alice")
    root = Issue.pending("Brand new", "body")
    root.children.append(Issue.pending("Kid"))

    result = Pusher(gh, default_repo=RepoRef.parse(REPO), current_user="alice").push(root, None)

    assert result.ok
    assert root.link == IssueLink("acme", "widgets", 1)
    assert root.children[0].link == IssueLink("acme", "widgets", 2)
    assert gh.sub_issue_links(root.link) == [root.children[0].link]


def test_new_root_without_repo_fails_cleanly():
    gh = MockGitHub()
    result = Pusher(gh).push(Issue.pending("Nowhere"), None)
    assert not result.ok
    assert result.failed[0].error.category == "generic"


def test_dry_run_touches_nothing():
    gh, _, base = _setup()
    edited = base.clone()
    edited.meta.title = "changed"
    before = len(gh.calls)

    result = Pusher(gh).push(edited, base, dry_run=True)

    assert result.dry_run
    assert [a.kind for a in result.planned] == ["update_issue_meta"]
    assert result.applied == []
    assert len(gh.calls) == before


def test_package_level_push_wrapper():
    import issuetree  # noqa: PLC0415

    gh, _, base = _setup()
    edited = base.clone()
    edited.children[1].meta.title = "B v2"

    result = issuetree.push(gh, edited, base, current_user="alice")

    assert result.ok
    assert [a.kind for a in result.applied] == ["update_issue_meta"]
