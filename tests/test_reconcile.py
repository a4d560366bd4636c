from __future__ import annotations

from issuetree.ingest import ingest
from issuetree.mock_github import MockGitHub
from issuetree.models import PENDING_COMMENT, CloseReason, CloseState, Comment, IssueLink, Linked, LinkedComment
from issuetree.reconcile import (
    AddSubIssue,
    CreateComment,
    CreateIssue,
    DeleteComment,
    RemoveSubIssue,
    UpdateComment,
    UpdateIssueBody,
    UpdateIssueMeta,
    UpdateIssueState,
    action_to_dict,
    format_plan,
    plan,
    reconcile,
)
from issuetree.tree import Issue

REPO = "acme/widgets"


def _base() -> tuple[MockGitHub, Issue]:
    gh = MockGitHub(user="alice")
    root = gh.seed_issue(REPO, "Root", "intro\n1. setup", labels=["epic"], comments=[("bob", "c1"), ("bob", "c2")])
    a = gh.seed_issue(REPO, "A", "a body", parent=root)
    gh.seed_issue(REPO, "A1", "", parent=a)
    gh.seed_issue(REPO, "B", "b body", parent=root)
    return gh, ingest(gh, root, current_user="alice")


def _comment_id(issue: Issue, index: int) -> int:
    ident = issue.comments[index].identity
    assert isinstance(ident, LinkedComment)
    return ident.comment_id


def test_identical_trees_need_no_actions():
    _, base = _base()
    assert reconcile(base.clone(), base) == []
    assert plan(base.clone(), base).empty


def test_single_comment_change_is_one_update():
    _, base = _base()
    edited = base.clone()
    edited.comments[2].text = "c2 edited"
    actions = reconcile(edited, base)
    assert actions == [UpdateComment((), _comment_id(base, 2), "c2 edited")]


def test_new_pending_sub_issue_with_two_comments():
    _, base = _base()
    edited = base.clone()
    child = Issue.pending("New", "new body", labels=["x"])
    child.comments.append(Comment(PENDING_COMMENT, None, "n1"))
    child.comments.append(Comment(PENDING_COMMENT, None, "n2"))
    edited.children[1].children.append(child)

    actions = reconcile(edited, base)

    assert [type(a) for a in actions] == [CreateIssue, CreateComment, CreateComment, AddSubIssue]
    create = actions[0]
    assert isinstance(create, CreateIssue)
    assert create.path == (1, 0)
    assert create.parent_path == (1,)
    assert create.labels == ("x",)
    assert actions[1] == CreateComment((1, 0), 1, "n1")
    assert actions[2] == CreateComment((1, 0), 2, "n2")
    assert actions[3] == AddSubIssue((1,), (1, 0))


def test_node_order_meta_state_body_comments_children():
    _, base = _base()
    edited = base.clone()
    edited.meta.title = "Root v2"
    edited.labels = ["epic", "later"]
    edited.meta.close_state = CloseState.closed(CloseReason.DUPLICATE)
    edited.set_body("intro\n1. [x] setup")
    del edited.comments[1]
    edited.comments.append(Comment(PENDING_COMMENT, None, "c3"))
    edited.children[0].meta.title = "A v2"

    actions = reconcile(edited, base)

    assert [type(a) for a in actions] == [
        UpdateIssueMeta,
        UpdateIssueState,
        UpdateIssueBody,
        CreateComment,
        DeleteComment,
        UpdateIssueMeta,
    ]
    assert actions[0] == UpdateIssueMeta((), "Root v2", ("epic", "later"))
    assert actions[2] == UpdateIssueBody((), "intro\n1. [x] setup")
    assert actions[3] == CreateComment((), 2, "c3")
    assert actions[4] == DeleteComment((), _comment_id(base, 1))
    assert actions[5] == UpdateIssueMeta((0,), "A v2", None)


def test_label_order_alone_is_not_a_change():
    _, base = _base()
    base.labels = ["a", "b"]
    edited = base.clone()
    edited.labels = ["b", "a"]
    assert reconcile(edited, base) == []


def test_reparenting_a_linked_issue():
    _, base = _base()
    edited = base.clone()
    a1 = edited.children[0].children.pop(0)
    edited.children[1].children.append(a1)

    actions = reconcile(edited, base)

    assert actions == [AddSubIssue((1,), (1, 0))]


def test_removed_child_is_detached():
    _, base = _base()
    edited = base.clone()
    removed = edited.children.pop(1)
    actions = reconcile(edited, base)
    assert actions == [RemoveSubIssue((), removed.link)]


def test_stub_nodes_are_never_diffed():
    _, base = _base()
    edited = base.clone()
    stub_link = edited.children[1].link
    edited.children[1] = Issue.stub("B", Linked(stub_link), "fetch failed")
    edited.children[1].meta.title = "renamed while broken"
    assert reconcile(edited, base) == []


def test_unknown_comment_id_is_a_conflict_and_skips_subtree():
    _, base = _base()
    edited = base.clone()
    edited.children[0].comments.append(Comment(LinkedComment(999_999), None, "forged"))
    edited.children[0].meta.title = "A v2"
    edited.children[1].meta.title = "B v2"

    result = plan(edited, base)

    assert len(result.conflicts) == 1
    assert result.conflicts[0].path == (0,)
    assert "999999" in str(result.conflicts[0])
    assert result.actions == [UpdateIssueMeta((1,), "B v2", None)]


def test_linked_node_unknown_to_snapshot_is_a_conflict():
    _, base = _base()
    edited = base.clone()
    edited.children.append(Issue.stub("x", Linked(IssueLink("acme", "widgets", 77)), "w"))
    edited.children[-1].warning = None
    result = plan(edited, base)
    assert [c.path for c in result.conflicts] == [(2,)]


def test_duplicate_link_is_a_conflict():
    _, base = _base()
    edited = base.clone()
    edited.children.append(edited.children[1].clone())
    result = plan(edited, base)
    assert [c.path for c in result.conflicts] == [(2,)]


def test_pending_root_creates_everything():
    root = Issue.pending("Fresh", "body")
    root.children.append(Issue.pending("Kid"))
    actions = reconcile(root, None)
    assert [type(a) for a in actions] == [CreateIssue, CreateIssue, AddSubIssue]
    assert actions[2] == AddSubIssue((), (0,))


def test_root_mismatch_is_a_conflict():
    _, base = _base()
    edited = base.clone()
    edited.meta.identity = Linked(IssueLink("other", "repo", 1))
    result = plan(edited, base)
    assert result.actions == []
    assert [c.path for c in result.conflicts] == [()]


def test_plan_formatting_and_dicts():
    _, base = _base()
    edited = base.clone()
    edited.children[0].meta.close_state = CloseState.closed()
    result = plan(edited, base)
    lines = format_plan(result)
    assert lines[0].startswith("[plan] Actions: 1")
    assert lines[1] == "  update_issue_state: set /0 closed(completed)"
    data = action_to_dict(result.actions[0])
    assert data["path"] == "/0"
    assert format_plan(plan(base.clone(), base)) == ["[plan] No changes to push"]


def test_closed_new_issue_is_created_then_closed():
    _, base = _base()
    edited = base.clone()
    done = Issue.pending("Already done")
    done.meta.close_state = CloseState.closed(CloseReason.NOT_PLANNED)
    done.comments.append(Comment(PENDING_COMMENT, None, "why"))
    edited.children.append(done)

    actions = reconcile(edited, base)

    assert [type(a) for a in actions] == [CreateIssue, UpdateIssueState, CreateComment, AddSubIssue]
    assert actions[1] == UpdateIssueState((2,), CloseState.closed(CloseReason.NOT_PLANNED))


def test_detached_subtree_is_attached_and_diffed():
    gh, base = _base()
    orphan_link = gh.seed_issue(REPO, "Orphan", "left behind")
    detached = ingest(gh, orphan_link, current_user="alice")
    edited = base.clone()
    orphan = detached.clone()
    orphan.meta.title = "Orphan v2"
    edited.children.append(orphan)

    assert [c.path for c in plan(edited, base).conflicts] == [(2,)]
    result = plan(edited, base, detached=[detached])

    assert result.conflicts == []
    assert result.actions == [UpdateIssueMeta((2,), "Orphan v2", None), AddSubIssue((), (2,))]
