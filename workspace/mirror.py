"""RuntimeMirror — best-effort propagation of store mutations into the sandbox.

The durable store is the source of truth; the mirror is a disposable copy.
Every method returns False on failure instead of raising, and a stale mirror
is repaired by the next mount_all().
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sandbox.base import MountTree
from sandbox.context import RuntimeContext
from workspace.errors import SyncError
from workspace.models import FileKind, FileRecord
from workspace.tree import TreeCache, resolve_path

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_NAMES = ("node_modules",)


def build_mount_tree(files: dict[str, str]) -> MountTree:
    """Nest {path: contents} into a mount tree, creating directories as needed."""
    tree: MountTree = {}
    for path, contents in files.items():
        parts = [part for part in path.split("/") if part]
        if not parts:
            continue
        subtree = tree
        for part in parts[:-1]:
            node = subtree.setdefault(part, {"directory": {}})
            if "directory" not in node:
                raise SyncError(f"Path conflicts with an existing file: {path}")
            subtree = node["directory"]
        subtree[parts[-1]] = {"file": {"contents": contents}}
    return tree


class RuntimeMirror:
    def __init__(
        self,
        context: RuntimeContext,
        cache: TreeCache,
        ignored_names: Iterable[str] = DEFAULT_IGNORED_NAMES,
    ):
        self.context = context
        self.cache = cache
        self.ignored_names = frozenset(ignored_names)

    def _skip(self, action: str) -> bool:
        if self.context.ready:
            return False
        logger.debug("Runtime not ready, skipping %s", action)
        return True

    def _report(self, action: str, exc: Exception) -> bool:
        error = exc if isinstance(exc, SyncError) else SyncError(f"{action} failed: {exc}")
        logger.warning("[Mirror] %s", error)
        return False

    async def mount_all(self, records: Iterable[FileRecord]) -> bool:
        """Materialize every file of the record set. Records must carry content."""
        if self._skip("mount"):
            return False
        records = list(records)
        index = {record.id: record for record in records}
        files: dict[str, str] = {}
        for record in records:
            if record.kind == FileKind.DIRECTORY:
                continue
            path = resolve_path(index, record.id)
            if path is None or self.ignored_names.intersection(path.split("/")):
                continue
            files[path] = record.content or ""
        try:
            await self.context.runtime.mount(build_mount_tree(files))
        except Exception as exc:
            return self._report("mount", exc)
        logger.info("Mounted %d file(s) into sandbox '%s'", len(files), self.context.runtime.name)
        return True

    async def sync_write(self, node_id: str, content: str) -> bool:
        if self._skip(f"write of {node_id}"):
            return False
        path = self.cache.resolve_path(node_id)
        if path is None:
            return self._report("write", SyncError(f"Cannot resolve path for {node_id}"))
        try:
            await self.context.runtime.fs().write_file(path, content)
        except Exception as exc:
            return self._report(f"write {path}", exc)
        return True

    async def sync_create(self, node_id: str, kind: FileKind, content: str = "") -> bool:
        if self._skip(f"create of {node_id}"):
            return False
        path = self.cache.resolve_path(node_id)
        if path is None:
            return self._report("create", SyncError(f"Cannot resolve path for {node_id}"))
        try:
            fs = self.context.runtime.fs()
            if kind == FileKind.DIRECTORY:
                await fs.mkdir(path, recursive=True)
            else:
                await fs.write_file(path, content)
        except Exception as exc:
            return self._report(f"create {path}", exc)
        return True

    async def sync_rename(self, old_path: str | None, new_path: str | None) -> bool:
        """Move a mirrored path. Used for both rename and move."""
        if self._skip(f"rename of {old_path}"):
            return False
        if not old_path or not new_path:
            return self._report("rename", SyncError(f"Unresolved path: {old_path!r} -> {new_path!r}"))
        if old_path == new_path:
            return True
        try:
            await self.context.runtime.fs().rename(old_path, new_path)
        except Exception as exc:
            return self._report(f"rename {old_path} -> {new_path}", exc)
        return True

    async def sync_delete(self, path: str | None) -> bool:
        if self._skip(f"delete of {path}"):
            return False
        if not path:
            return self._report("delete", SyncError("Unresolved path"))
        try:
            await self.context.runtime.fs().rm(path, recursive=True)
        except Exception as exc:
            return self._report(f"delete {path}", exc)
        return True
