"""Blocker sequence codec.

An issue body may end with a numbered run of action items ("blockers")::

    do X
    1. setup
    2.a config
    2.b docs
    3. [x] (after 1, 2.a) ship
       - nested notes are kept verbatim

``N.`` / ``N)`` items are blocking group heads, ``N.x`` items are
non-blocking sibling branches of group ``N``. ``parse`` splits a body into
``(free_text, BlockerSequence)`` and ``serialize`` joins them back; for any
body the pair is an exact inverse, nothing is normalised and no line is lost.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field

_ITEM_RE = re.compile(
    r"^(?P<marker>(?P<head>\d+)(?:[.)]|\.(?P<letter>[a-z])\.?)\s+)(?P<rest>.*)$"
)
_ORDINAL_RE = re.compile(r"^(?P<head>\d+)(?:\.(?P<letter>[a-z]))?$")
_PREREQ_RE = re.compile(r"^\(after (?P<refs>\d+(?:\.[a-z])?(?:, \d+(?:\.[a-z])?)*)\) ")
_DONE_BOXES = ("x", "X")


def _ordinal_key(ordinal: str) -> tuple[int, str]:
    m = _ORDINAL_RE.match(ordinal)
    if not m:
        raise ValueError(f"invalid blocker ordinal {ordinal!r}")
    return int(m.group("head")), m.group("letter") or ""


@dataclass
class BlockerItem:
    ordinal: str
    blocking: bool
    done: bool
    description: str
    nested: list[str] = field(default_factory=list)
    prerequisites: list[str] = field(default_factory=list)
    # surface syntax, kept so hand-written variants survive a round trip
    marker: str = field(default="", compare=False)
    box: str | None = field(default=None, compare=False)

    @property
    def group(self) -> int:
        return _ordinal_key(self.ordinal)[0]

    @property
    def is_head(self) -> bool:
        return not _ordinal_key(self.ordinal)[1]

    def default_marker(self) -> str:
        return f"{self.ordinal}. " if self.is_head else f"{self.ordinal} "

    def render(self) -> str:
        line = self.marker or self.default_marker()
        if self.done:
            line += f"[{self.box if self.box in _DONE_BOXES else 'x'}] "
        elif self.box == " ":
            line += "[ ] "
        if self.prerequisites:
            line += f"(after {', '.join(self.prerequisites)}) "
        return "\n".join([line + self.description, *self.nested])


@dataclass
class BlockerSequence:
    items: list[BlockerItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list, compare=False)

    def __iter__(self) -> Iterator[BlockerItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def ordered(self) -> list[BlockerItem]:
        """Items in ordinal order (heads before their lettered branches)."""
        indexed = list(enumerate(self.items))
        indexed.sort(key=lambda pair: (_ordinal_key(pair[1].ordinal), pair[0]))
        return [item for _, item in indexed]

    def prerequisites_of(self, item: BlockerItem) -> list[str]:
        """Explicit prerequisites, or the previous group head when none are declared."""
        if item.prerequisites:
            return list(item.prerequisites)
        if not item.is_head:
            return []
        earlier = sorted({i.group for i in self.items if i.is_head and i.group < item.group})
        return [str(earlier[-1])] if earlier else []

    def _satisfied(self, ordinal: str) -> bool:
        matches = [i for i in self.items if i.ordinal == ordinal]
        return all(i.done for i in matches)

    def current(self) -> BlockerItem | None:
        """Top of the blocker stack: first actionable blocking item, if any."""
        for item in self.ordered():
            if not item.blocking or item.done:
                continue
            if all(self._satisfied(ref) for ref in self.prerequisites_of(item)):
                return item
        return None

    def add(self, description: str) -> BlockerItem:
        next_head = max((i.group for i in self.items), default=0) + 1
        item = BlockerItem(ordinal=str(next_head), blocking=True, done=False, description=description)
        self.items.append(item)
        return item

    def complete_current(self) -> BlockerItem | None:
        item = self.current()
        if item is not None:
            item.done = True
        return item


def _is_item(line: str) -> bool:
    return _ITEM_RE.match(line) is not None


def _is_continuation(line: str) -> bool:
    return line == "" or line[0] in (" ", "\t")


def _block_start(lines: list[str]) -> int | None:
    """Earliest index from which every line belongs to the blocker block."""
    start: int | None = None
    # scan backwards: a start is valid while everything after it qualifies
    for idx in range(len(lines) - 1, -1, -1):
        line = lines[idx]
        if _is_item(line):
            if idx != 1 or lines[0] != "":
                start = idx
        elif not _is_continuation(line):
            break
    return start


def _parse_item(line: str) -> BlockerItem:
    m = _ITEM_RE.match(line)
    assert m is not None
    rest = m.group("rest")
    box: str | None = None
    if len(rest) >= 4 and rest[0] == "[" and rest[2:4] == "] " and rest[1] in (" ", *_DONE_BOXES):
        box = rest[1]
        rest = rest[4:]
    prerequisites: list[str] = []
    pm = _PREREQ_RE.match(rest)
    if pm:
        prerequisites = pm.group("refs").split(", ")
        rest = rest[pm.end():]
    letter = m.group("letter")
    ordinal = m.group("head") + (f".{letter}" if letter else "")
    return BlockerItem(
        ordinal=ordinal,
        blocking=letter is None,
        done=box in _DONE_BOXES,
        description=rest,
        prerequisites=prerequisites,
        marker=m.group("marker"),
        box=box,
    )


def _apply_group_rules(items: list[BlockerItem]) -> list[str]:
    warnings: list[str] = []
    heads = {i.group for i in items if i.is_head}
    seen_blocking: set[int] = set()
    for item in items:
        if not item.is_head:
            if item.group not in heads:
                warnings.append(
                    f"blocker {item.ordinal}: group {item.group} has no head item; no blocking relation assumed"
                )
            continue
        if item.group in seen_blocking and not item.prerequisites:
            item.blocking = False
            warnings.append(
                f"blocker {item.ordinal}: second blocking item in group without prerequisites; treated as non-blocking"
            )
            continue
        seen_blocking.add(item.group)
    known = {i.ordinal for i in items}
    for item in items:
        for ref in item.prerequisites:
            if ref not in known:
                warnings.append(f"blocker {item.ordinal}: unknown prerequisite {ref}")
    return warnings


def parse(body_text: str) -> tuple[str, BlockerSequence]:
    """Split a body into free text and its trailing blocker sequence."""
    lines = body_text.split("\n")
    start = _block_start(lines)
    if start is None:
        return body_text, BlockerSequence()
    items: list[BlockerItem] = []
    for line in lines[start:]:
        if _is_item(line):
            items.append(_parse_item(line))
        else:
            items[-1].nested.append(line)
    warnings = _apply_group_rules(items)
    return "\n".join(lines[:start]), BlockerSequence(items, warnings)


def serialize(free_text: str, blockers: BlockerSequence) -> str:
    if not blockers.items:
        return free_text
    block = "\n".join(item.render() for item in blockers.items)
    return f"{free_text}\n{block}" if free_text else block


__all__ = ["BlockerItem", "BlockerSequence", "parse", "serialize"]
