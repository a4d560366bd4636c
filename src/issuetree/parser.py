from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import ParseError
from .models import (
    PENDING,
    PENDING_COMMENT,
    CloseState,
    Comment,
    IssueIdentity,
    IssueLink,
    Linked,
    LinkedComment,
    format_timestamp,
    parse_timestamp,
)
from .tree import Issue, IssueMeta

_header_re = re.compile(r"^(?P<hashes>#+) \[(?P<box>.?)\] (?P<rest>.*)$")
_issue_marker_re = re.compile(r"^(?P<head>.*?)\s*<!-- issue: (?P<meta>.*?) -->$")
_comment_marker_re = re.compile(r"^<!-- comment: (?P<id>\d+|new)(?: @(?P<author>\S+))? -->$")
_labels_re = re.compile(r"^\[(?P<labels>[^\]]*)\] (?P<title>.*)$")
_LEGACY_NEW_COMMENT = {"!c", "<!-- new comment -->"}
_STUB_SEP = " stub: "
_ESCAPE = "\\"
_stub_re = re.compile(r"^(?P<fields>.*?)(?P<stub> stub:(?: (?P<warning>.*))?)?$")


@dataclass
class _Section:
    line_no: int
    issue: Issue
    comment: Comment | None = None
    lines: list[str] = field(default_factory=list)

    def flush(self, trailing_separator: bool) -> None:
        lines = self.lines
        if trailing_separator and lines and lines[-1] == "":
            lines = lines[:-1]
        text = "\n".join(lines)
        if self.comment is not None:
            self.comment.text = text
        else:
            self.issue.set_body(text)


# --- header -------------------------------------------------------------


def _render_marker(issue: Issue) -> str:
    meta = issue.meta
    if isinstance(meta.identity, Linked):
        tokens = [meta.identity.link.url]
    else:
        tokens = ["new"]
    if meta.author:
        tokens.append(f"@{meta.author}")
    if meta.owned:
        tokens.append("owned")
    if issue.last_contents_change is not None:
        tokens.append(f"updated={format_timestamp(issue.last_contents_change)}")
    text = " ".join(tokens)
    if issue.warning is not None:
        text += _STUB_SEP + issue.warning
    return f"<!-- issue: {text} -->"


def render_header(issue: Issue, depth: int) -> str:
    meta = issue.meta
    line = f"{'#' * depth} [{meta.close_state.to_checkbox()}] "
    if issue.labels:
        line += f"[{', '.join(issue.labels)}] "
    elif meta.title.startswith("["):
        line += "[] "
    line += meta.title
    if isinstance(meta.identity, Linked) or meta.author or meta.owned or issue.is_stub or issue.last_contents_change:
        line += " " + _render_marker(issue)
    return line


def _parse_identity(token: str, line_no: int) -> IssueIdentity:
    if token == "new":
        return PENDING
    link = IssueLink.parse(token)
    if link is None:
        raise ParseError(f"invalid issue link {token!r}", line=line_no)
    return Linked(link)


def _parse_header(match: re.Match[str], line_no: int) -> Issue | None:
    close_state = CloseState.from_checkbox(match.group("box"))
    if close_state is None:
        return None
    rest = match.group("rest")
    meta_text: str | None = None
    mm = _issue_marker_re.match(rest)
    if mm:
        rest, meta_text = mm.group("head"), mm.group("meta")
    labels: list[str] = []
    lm = _labels_re.match(rest)
    if lm:
        labels = [p.strip() for p in lm.group("labels").split(",") if p.strip()]
        rest = lm.group("title")
    meta = IssueMeta(title=rest, close_state=close_state)
    issue = Issue(meta, labels=labels)
    if meta_text is None:
        return issue
    sm = _stub_re.match(meta_text)
    assert sm is not None
    if sm.group("stub"):
        issue.warning = sm.group("warning") or ""
    tokens = sm.group("fields").split()
    if not tokens:
        raise ParseError("empty issue marker", line=line_no)
    meta.identity = _parse_identity(tokens[0], line_no)
    for token in tokens[1:]:
        if token.startswith("@"):
            meta.author = token[1:]
        elif token == "owned":
            meta.owned = True
        elif token.startswith("updated="):
            issue.last_contents_change = parse_timestamp(token.removeprefix("updated="))
        else:
            raise ParseError(f"unknown issue marker field {token!r}", line=line_no)
    issue.comments[0].author = meta.author
    return issue


# --- comments -----------------------------------------------------------


def render_comment_marker(comment: Comment) -> str:
    ident = comment.identity
    head = str(ident.comment_id) if isinstance(ident, LinkedComment) else "new"
    author = f" @{comment.author}" if comment.author else ""
    return f"<!-- comment: {head}{author} -->"


def _parse_comment_marker(line: str) -> Comment | None:
    if line.strip().lower() in _LEGACY_NEW_COMMENT:
        return Comment(PENDING_COMMENT, None, "")
    m = _comment_marker_re.match(line)
    if not m:
        return None
    raw_id = m.group("id")
    identity = PENDING_COMMENT if raw_id == "new" else LinkedComment(int(raw_id))
    return Comment(identity, m.group("author"), "")


def _escape(line: str) -> str:
    """Prefix content lines that would otherwise read back as structure."""
    if line.startswith(_ESCAPE) or _header_re.match(line) or _parse_comment_marker(line) is not None:
        return _ESCAPE + line
    return line


# --- public API ---------------------------------------------------------


def render(issue: Issue) -> str:
    """Render a tree to the on-disk text form; ``load_local`` is its inverse."""
    sections: list[list[str]] = []

    def _content(text: str) -> list[str]:
        return [_escape(line) for line in text.split("\n")] if text else []

    def _walk(node: Issue, depth: int) -> None:
        sections.append([render_header(node, depth), *_content(node.body())])
        for comment in node.true_comments:
            sections.append([render_comment_marker(comment), *_content(comment.text)])
        for child in node.children:
            _walk(child, depth + 1)

    _walk(issue, 1)
    out: list[str] = []
    for idx, section in enumerate(sections):
        if idx:
            out.append("")
        out.extend(section)
    return "\n".join(out) + "\n"


def load_local(text: str) -> Issue:  # noqa: C901 - single pass state machine
    """Parse the on-disk text form into an :class:`Issue` tree.

    Headers that skip a depth level, and second root headers, are kept as
    ordinary text of the enclosing section. A leading backslash marks an
    escaped content line: it is dropped and the rest is taken verbatim. A
    file without any root header raises :class:`ParseError`.
    """
    if text.endswith("\n"):
        text = text[:-1]
    lines = text.split("\n")
    root: Issue | None = None
    stack: list[tuple[int, Issue]] = []
    current: _Section | None = None

    for line_no, line in enumerate(lines, start=1):
        if current is not None and line.startswith(_ESCAPE):
            current.lines.append(line[1:])
            continue
        hm = _header_re.match(line)
        if hm:
            depth = len(hm.group("hashes"))
            valid_depth = (root is None and depth == 1) or (root is not None and 2 <= depth <= stack[-1][0] + 1)
            issue = _parse_header(hm, line_no) if valid_depth else None
            if issue is not None:
                if current is not None:
                    current.flush(trailing_separator=True)
                if root is None:
                    root = issue
                else:
                    while stack[-1][0] >= depth:
                        stack.pop()
                    stack[-1][1].children.append(issue)
                stack.append((depth, issue))
                current = _Section(line_no, issue)
                continue
        if current is not None:
            comment = _parse_comment_marker(line)
            if comment is not None:
                current.flush(trailing_separator=True)
                owner = stack[-1][1]
                owner.comments.append(comment)
                current = _Section(line_no, owner, comment)
                continue
            current.lines.append(line)
            continue
        if line.strip():
            raise ParseError("text before the root issue header", line=line_no)

    if root is None or current is None:
        raise ParseError("no root issue header found")
    current.flush(trailing_separator=False)
    return root


__all__ = ["ParseError", "load_local", "render", "render_comment_marker", "render_header"]
