"""Tree building and the tree cache.

build_tree is pure: the same record set always yields the same tree. The
cache never patches a tree in place; rebuild() swaps in a whole new snapshot.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from workspace.models import FileKind, FileNode, FileRecord

logger = logging.getLogger(__name__)


def _sort_key(node: FileNode) -> tuple[int, str]:
    return (0 if node.kind == FileKind.DIRECTORY else 1, node.name)


@dataclass
class _Draft:
    record: FileRecord
    children: list[_Draft] | None = None

    def freeze(self) -> FileNode:
        children = None
        if self.children is not None:
            children = tuple(sorted((child.freeze() for child in self.children), key=_sort_key))
        return FileNode(
            id=self.record.id,
            name=self.record.name,
            parent_id=self.record.parent_id,
            kind=self.record.kind,
            children=children,
        )


def build_tree(records: Iterable[FileRecord]) -> list[FileNode]:
    """Turn a flat record set into sorted root nodes.

    Records whose parent is missing (or is a file) are promoted to roots.
    Records trapped in a parent cycle are unreachable and left out.
    """
    drafts: dict[str, _Draft] = {}
    for record in records:
        drafts[record.id] = _Draft(record, [] if record.kind == FileKind.DIRECTORY else None)

    roots: list[_Draft] = []
    for draft in drafts.values():
        parent_id = draft.record.parent_id
        if parent_id is None:
            roots.append(draft)
            continue
        parent = drafts.get(parent_id)
        if parent is None or parent.children is None:
            logger.warning(
                "Record %s (%s) references invalid parent %s; treating as root",
                draft.record.id,
                draft.record.name,
                parent_id,
            )
            roots.append(draft)
            continue
        parent.children.append(draft)

    tree = sorted((draft.freeze() for draft in roots), key=_sort_key)
    reachable = _count(tree)
    if reachable != len(drafts):
        logger.warning("%d record(s) unreachable from any root (parent cycle)", len(drafts) - reachable)
    return tree


def _count(nodes: Iterable[FileNode]) -> int:
    total = 0
    stack = list(nodes)
    while stack:
        node = stack.pop()
        total += 1
        if node.children:
            stack.extend(node.children)
    return total


def descendant_ids(records: Iterable[FileRecord], node_id: str) -> set[str]:
    """Closure of node_id over child links, inclusive. Empty if node_id is unknown."""
    children: dict[str | None, list[str]] = {}
    known: set[str] = set()
    for record in records:
        known.add(record.id)
        children.setdefault(record.parent_id, []).append(record.id)
    if node_id not in known:
        return set()

    visited = {node_id}
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        for child_id in children.get(current, ()):
            if child_id not in visited:
                visited.add(child_id)
                queue.append(child_id)
    return visited


def resolve_path(index: dict[str, FileRecord], node_id: str) -> str | None:
    """Join names from root to node with '/'. None for unknown ids and cycles."""
    parts: list[str] = []
    seen: set[str] = set()
    current = index.get(node_id)
    if current is None:
        return None
    while current is not None:
        if current.id in seen:
            logger.warning("Parent cycle detected while resolving %s", node_id)
            return None
        seen.add(current.id)
        parts.append(current.name)
        if current.parent_id is None:
            break
        # A dangling or file parent ends the walk, matching build_tree's orphan-as-root rule.
        parent = index.get(current.parent_id)
        if parent is None or parent.kind != FileKind.DIRECTORY:
            break
        current = parent
    return "/".join(reversed(parts))


@dataclass(frozen=True)
class TreeSnapshot:
    tree: tuple[FileNode, ...] = ()
    records: dict[str, FileRecord] = field(default_factory=dict)
    paths: dict[str, str] = field(default_factory=dict)


class TreeCache:
    """Last built tree plus flat indexes for O(1) lookups."""

    def __init__(self) -> None:
        self._snapshot = TreeSnapshot()

    @property
    def snapshot(self) -> TreeSnapshot:
        return self._snapshot

    def rebuild(self, records: Iterable[FileRecord]) -> list[FileNode]:
        records = list(records)
        index = {record.id: record for record in records}
        paths: dict[str, str] = {}
        for record in records:
            path = resolve_path(index, record.id)
            if path is not None:
                paths[path] = record.id
        self._snapshot = TreeSnapshot(tree=tuple(build_tree(records)), records=index, paths=paths)
        return self.get()

    def get(self) -> list[FileNode]:
        return list(self._snapshot.tree)

    def get_record(self, node_id: str) -> FileRecord | None:
        return self._snapshot.records.get(node_id)

    def resolve_path(self, node_id: str) -> str | None:
        return resolve_path(self._snapshot.records, node_id)

    def find_id_by_path(self, path: str) -> str | None:
        return self._snapshot.paths.get(path.strip("/"))

    def descendant_ids(self, node_id: str) -> set[str]:
        return descendant_ids(self._snapshot.records.values(), node_id)
