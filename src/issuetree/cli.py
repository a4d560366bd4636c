"""issuetree CLI.

Subcommands:
  pull      -> fetch an issue tree and write it as a local file (+ snapshot)
  push      -> reconcile the edited file against the snapshot and apply it
  diff      -> show local changes against the snapshot (no network)
  blockers  -> show or edit the blocker stack of a local file

Editor invocation is left to the caller; the file is plain text.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from issuetree.blockers import BlockerSequence
from issuetree.config import CONFIG_FILENAME, ConfigError, SyncConfig, default_config, load_config
from issuetree.core import IssueTreeSync
from issuetree.diffing import format_diff, tree_diff
from issuetree.errors import IssueTreeError, ParseError, StaleBase, format_path
from issuetree.parser import load_local, render
from issuetree.reconcile import format_plan, plan
from issuetree.snapshot import SnapshotStore
from issuetree.tree import Issue

EXIT_FAILED = 1
EXIT_ERROR = 2
EXIT_STALE = 3

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands.

    Keep ordering stable for help output readability.
    """
    p = _FormatterArgumentParser(prog="issuetree", description="Edit GitHub issue trees as local text files")
    p.add_argument("--config", default=CONFIG_FILENAME, help="Config file (defaults used when missing)")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational logging (env: ISSUETREE_QUIET=1)",
    )
    p.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs on stderr")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pp = sub.add_parser("pull", help="Fetch an issue tree into a local file")
    pp.add_argument("url", help="Issue URL (https://github.com/owner/repo/issues/N)")
    pp.add_argument("--out", help="Target file (default: <issues_dir>/<owner>/<repo>/<N>.md)")

    ps = sub.add_parser("push", help="Push local edits to GitHub")
    ps.add_argument("file")
    ps.add_argument("--force", action="store_true", help="Skip the remote staleness check")
    ps.add_argument("--dry-run", action="store_true", help="Only print the planned actions")
    ps.add_argument("--summary-json", help="Write the push result as JSON to this path")

    pd = sub.add_parser("diff", help="Show local changes against the last snapshot")
    pd.add_argument("file")

    pb = sub.add_parser("blockers", help="Show or edit the blocker stack")
    pb.add_argument("file")
    pb.add_argument("--all", action="store_true", help="List every blocker, not just the current one")
    pb.add_argument("--node", default="", help="Tree path of the node to edit (e.g. 0/1; default root)")
    group = pb.add_mutually_exclusive_group()
    group.add_argument("--add", metavar="TEXT", help="Append a blocker to the node")
    group.add_argument("--done", action="store_true", help="Mark the node's current blocker done")
    return p


def prepare_config(args: argparse.Namespace) -> SyncConfig:
    """Load config for the namespace and apply global flag overrides."""
    path = Path(args.config)
    cfg = load_config(path) if path.exists() else default_config(Path.cwd())
    if args.quiet:
        cfg.logging_level = "WARNING"
    if args.json_logs:
        cfg.logging_json_enabled = True
    return cfg


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def _read_tree(path: str) -> Issue:
    return load_local(Path(path).read_text(encoding="utf-8"))


def _parse_node_path(raw: str) -> tuple[int, ...]:
    parts = [p for p in raw.strip("/").split("/") if p]
    try:
        return tuple(int(p) for p in parts)
    except ValueError as exc:
        raise IssueTreeError(f"invalid node path {raw!r}") from exc


def _cmd_pull(cfg: SyncConfig, args: argparse.Namespace) -> int:
    engine = IssueTreeSync(cfg)
    target = engine.pull(args.url, Path(args.out) if args.out else None)
    print(target)
    return 0


def _load_base(cfg: SyncConfig, edited: Issue) -> Issue | None:
    return SnapshotStore(cfg.snapshot_dir).load(edited.link) if edited.link is not None else None


def _cmd_push(cfg: SyncConfig, args: argparse.Namespace) -> int:
    if args.dry_run:
        # offline: plan against the snapshot only
        edited = _read_tree(args.file)
        detached = SnapshotStore(cfg.snapshot_dir).load_detached(edited.link) if edited.link is not None else []
        _print_lines(format_plan(plan(edited, _load_base(cfg, edited), detached)))
        return 0
    engine = IssueTreeSync(cfg)
    try:
        result = engine.push_file(Path(args.file), force=args.force)
    except StaleBase as exc:
        print(f"[push] {exc}", file=sys.stderr)
        print("[push] pull again to merge remote changes, or re-run with --force", file=sys.stderr)
        return EXIT_STALE
    summary = result.to_dict()
    if args.summary_json:
        Path(args.summary_json).write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
    print(
        f"[push] applied={len(result.applied)} failed={len(result.failed)} "
        f"skipped={len(result.skipped)} conflicts={len(result.conflicts)}"
    )
    for failed in result.failed:
        print(f"  failed: {failed.action.describe()} ({failed.error.category}: {failed.error.message})")
    for conflict in result.conflicts:
        print(f"  conflict: {conflict}")
    return 0 if result.ok else EXIT_FAILED


def _cmd_diff(cfg: SyncConfig, args: argparse.Namespace) -> int:
    edited = _read_tree(args.file)
    base = _load_base(cfg, edited)
    if edited.link is not None and base is None:
        print("[diff] No snapshot found; every node is reported as new")
    _print_lines(format_diff(tree_diff(edited, base)))
    return 0


def _blocker_lines(seq: BlockerSequence, show_all: bool) -> list[str]:
    if not show_all:
        current = seq.current()
        return [f"{current.ordinal}. {current.description}"] if current else []
    lines = []
    for item in seq.ordered():
        box = "x" if item.done else " "
        indent = "  " if not item.is_head else ""
        kind = "" if item.blocking else " (branch)"
        lines.append(f"{indent}[{box}] {item.ordinal} {item.description}{kind}")
    lines.extend(f"warning: {w}" for w in seq.warnings)
    return lines


def _cmd_blockers(args: argparse.Namespace) -> int:
    tree = _read_tree(args.file)
    if args.add or args.done:
        node_path = _parse_node_path(args.node)
        try:
            node = tree.node_at(node_path)
        except IndexError as exc:
            raise IssueTreeError(f"no node at {args.node!r}") from exc
        if args.add:
            item = node.blockers.add(args.add)
            print(f"added {item.ordinal}. {item.description}")
        else:
            done = node.blockers.complete_current()
            if done is None:
                print("no open blocker")
                return EXIT_FAILED
            print(f"done {done.ordinal}. {done.description}")
        Path(args.file).write_text(render(tree), encoding="utf-8")
        return 0
    for path, node in tree.flatten():
        if not node.blockers.items:
            continue
        lines = _blocker_lines(node.blockers, args.all)
        if not lines:
            continue
        print(f"{format_path(path)} {node.meta.title}")
        _print_lines(f"  {line}" for line in lines)
    return 0


def _build_handlers(args: argparse.Namespace, cfg: SyncConfig) -> dict[str, Any]:
    return {
        "pull": lambda: _cmd_pull(cfg, args),
        "push": lambda: _cmd_push(cfg, args),
        "diff": lambda: _cmd_diff(cfg, args),
        "blockers": lambda: _cmd_blockers(args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.quiet and os.environ.get("ISSUETREE_QUIET") == "1":
        args.quiet = True
    try:
        cfg = prepare_config(args)
        handler = _build_handlers(args, cfg).get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return EXIT_FAILED
        return int(handler())
    except ParseError as exc:
        print(f"[error] {getattr(args, 'file', '')}: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except (ConfigError, IssueTreeError, OSError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
