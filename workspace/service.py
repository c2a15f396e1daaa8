"""IDEService — coordinates the store, tree cache, runtime mirror and dispatcher.

Every mutation follows the same sequence under one lock:

    durable write → cache rebuild → best-effort mirror

A mirror failure never rolls back the durable write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from sandbox.context import RuntimeContext
from workspace.errors import NotFoundError, SyncError, ValidationError
from workspace.executor import ExecutionDispatcher, OutputSink, notice_line
from workspace.local_import import DEFAULT_SKIPPED_NAMES, read_directory
from workspace.mirror import DEFAULT_IGNORED_NAMES, RuntimeMirror
from workspace.models import FileKind, FileNode, parse_file_kind
from workspace.store import FileStore
from workspace.tree import TreeCache

logger = logging.getLogger(__name__)

CONTENT_BATCH_SIZE = 100

# Owned by the sandbox toolchain; pull() never folds these back into the store.
PULL_IGNORED_NAMES = ("node_modules", ".git")

_UNSET = object()


@dataclass
class MutationResult:
    tree: list[FileNode]
    node_id: str | None = None


class IDEService:
    def __init__(
        self,
        store: FileStore,
        context: RuntimeContext,
        sink: OutputSink,
        *,
        interpreter: str = "node",
        interpreter_args: list[str] | None = None,
        ignored_names: Iterable[str] = DEFAULT_IGNORED_NAMES,
        skipped_names: Iterable[str] = DEFAULT_SKIPPED_NAMES,
    ):
        self.store = store
        self.context = context
        self.sink = sink
        self.ignored_names = tuple(ignored_names)
        self.skipped_names = tuple(skipped_names)
        self.cache = TreeCache()
        self.mirror = RuntimeMirror(context, self.cache, self.ignored_names)
        self.dispatcher = ExecutionDispatcher(
            context,
            self.cache,
            sink,
            interpreter=interpreter,
            interpreter_args=interpreter_args,
        )
        self._mutation_lock = asyncio.Lock()

    # ==================== Lifecycle ====================

    async def initialize(self) -> list[FileNode]:
        await self.store.initialize()
        if not self.store.durable:
            self.sink.write(notice_line("Storage unavailable; changes will not survive a restart."))

        if self.context.runtime is None:
            self.sink.write(notice_line("No sandbox runtime configured; files cannot be executed."))
        elif not await self.context.boot():
            self.sink.write(notice_line(f"Sandbox failed to start: {self.context.error}"))

        tree = await self.refresh()
        await self.remount()
        return tree

    async def remount(self) -> bool:
        """Rebuild the whole runtime mirror from the store."""
        if not self.context.ready:
            return False
        records = await self.store.list()
        file_ids = [record.id for record in records if record.kind == FileKind.FILE]
        contents: dict[str, str] = {}
        for start in range(0, len(file_ids), CONTENT_BATCH_SIZE):
            contents.update(await self.store.get_batch_content(file_ids[start : start + CONTENT_BATCH_SIZE]))
        for record in records:
            if record.kind == FileKind.FILE:
                record.content = contents.get(record.id, "")
        return await self.mirror.mount_all(records)

    async def close(self) -> None:
        await self.context.close()
        await self.store.close()

    # ==================== Reads ====================

    async def refresh(self) -> list[FileNode]:
        return self.cache.rebuild(await self.store.list())

    @property
    def tree(self) -> list[FileNode]:
        return self.cache.get()

    async def get_content(self, node_id: str) -> str:
        return await self.store.get_content(node_id)

    # ==================== Mutations ====================

    async def save_content(self, node_id: str, content: str) -> MutationResult:
        async with self._mutation_lock:
            await self.store.save_content(node_id, content)
            tree = await self.refresh()
            await self.mirror.sync_write(node_id, content)
            return MutationResult(tree, node_id)

    async def create_node(
        self,
        name: str,
        kind: FileKind | str,
        parent_id: str | None | object = _UNSET,
        *,
        selected_id: str | None = None,
        content: str = "",
    ) -> MutationResult:
        """Create a node. Without an explicit parent_id, the parent follows the selection."""
        kind = parse_file_kind(kind)
        async with self._mutation_lock:
            if parent_id is _UNSET:
                parent_id = self._parent_for_selection(selected_id)
            node_id = await self.store.create(name, parent_id, kind, content)
            tree = await self.refresh()
            await self.mirror.sync_create(node_id, kind, content)
            return MutationResult(tree, node_id)

    def _parent_for_selection(self, selected_id: str | None) -> str | None:
        if selected_id is None:
            return None
        record = self.cache.get_record(selected_id)
        if record is None:
            return None
        return record.id if record.kind == FileKind.DIRECTORY else record.parent_id

    async def rename_node(self, node_id: str, new_name: str) -> MutationResult:
        async with self._mutation_lock:
            old_path = self.cache.resolve_path(node_id)
            await self.store.rename(node_id, new_name)
            tree = await self.refresh()
            await self.mirror.sync_rename(old_path, self.cache.resolve_path(node_id))
            return MutationResult(tree, node_id)

    async def move_node(self, node_id: str, new_parent_id: str | None) -> MutationResult:
        async with self._mutation_lock:
            old_path = self.cache.resolve_path(node_id)
            await self.store.move(node_id, new_parent_id)
            tree = await self.refresh()
            await self.mirror.sync_rename(old_path, self.cache.resolve_path(node_id))
            return MutationResult(tree, node_id)

    async def delete_node(self, node_id: str) -> MutationResult:
        async with self._mutation_lock:
            path = self.cache.resolve_path(node_id)
            await self.store.delete(node_id)
            tree = await self.refresh()
            await self.mirror.sync_delete(path)
            return MutationResult(tree, node_id)

    async def reset(self) -> MutationResult:
        async with self._mutation_lock:
            stale = self._mirrored_roots()
            await self.store.reset()
            tree = await self.refresh()
            await self._clear_mirror(stale)
            return MutationResult(tree)

    async def import_directory(
        self,
        path: str | Path,
        skipped_names: Iterable[str] | None = None,
    ) -> MutationResult:
        """Replace the workspace with the contents of a host directory.

        The swap is atomic: if any entry is rejected the previous workspace
        stays as it was, in the store and in the tree.
        """
        if skipped_names is None:
            skipped_names = self.skipped_names
        records = await asyncio.to_thread(read_directory, path, skipped_names)
        async with self._mutation_lock:
            stale = self._mirrored_roots()
            try:
                await self.store.replace_all(records)
            finally:
                tree = await self.refresh()
            await self._clear_mirror(stale)
            await self.remount()
        logger.info("Imported %d entries from %s", len(records), path)
        return MutationResult(tree)

    def _mirrored_roots(self) -> list[str]:
        return [node.name for node in self.cache.get() if node.name not in self.ignored_names]

    async def _clear_mirror(self, paths: list[str]) -> None:
        for path in paths:
            await self.mirror.sync_delete(path)

    # ==================== Sandbox → store ====================

    async def pull(self, delete_missing: bool = False) -> MutationResult | None:
        """Fold changes made inside the sandbox back into the store.

        New sandbox entries are created, and files whose contents differ are
        saved. With delete_missing, workspace entries absent from the sandbox
        are deleted as well; leave it off unless the mirror is known to be
        complete. Returns None when the sandbox is unavailable.
        """
        if not self.context.ready:
            return None
        ignored = frozenset(self.ignored_names).union(PULL_IGNORED_NAMES)
        async with self._mutation_lock:
            try:
                entries = await self.context.runtime.fs().snapshot(ignored)
            except Exception as exc:
                logger.warning("[Pull] %s", SyncError(f"snapshot failed: {exc}"))
                return None
            await self.refresh()
            known = dict(self.cache.snapshot.paths)
            deleted = await self._pull_deletions(entries, known, ignored) if delete_missing else 0
            created, existing = await self._pull_entries(entries, known)
            updated = await self._pull_contents(existing)
            tree = await self.refresh()
        logger.info("Pulled from sandbox: %d created, %d updated, %d deleted", created, updated, deleted)
        return MutationResult(tree)

    async def _pull_entries(
        self, entries: dict[str, str | None], known: dict[str, str]
    ) -> tuple[int, dict[str, str]]:
        """Create entries missing from the store, parents first.

        Returns the number created and the sandbox contents of files the store
        already had, keyed by node id.
        """
        created = 0
        existing: dict[str, str] = {}
        for path in sorted(entries, key=lambda p: (p.count("/"), p)):
            content = entries[path]
            kind = FileKind.DIRECTORY if content is None else FileKind.FILE
            node_id = known.get(path)
            if node_id is not None:
                record = self.cache.get_record(node_id)
                if record is not None and record.kind != kind:
                    logger.warning("[Pull] %s is a %s in the sandbox but a %s in the workspace", path, kind, record.kind)
                elif kind == FileKind.FILE:
                    existing[node_id] = content
                continue
            parent_path, _, name = path.rpartition("/")
            parent_id = known.get(parent_path) if parent_path else None
            if parent_path and parent_id is None:
                logger.warning("[Pull] Skipping %s: parent is not in the workspace", path)
                continue
            try:
                known[path] = await self.store.create(name, parent_id, kind, content or "")
            except (NotFoundError, ValidationError) as exc:
                logger.warning("[Pull] Skipping %s: %s", path, exc)
                continue
            created += 1
        return created, existing

    async def _pull_contents(self, existing: dict[str, str]) -> int:
        updated = 0
        file_ids = list(existing)
        for start in range(0, len(file_ids), CONTENT_BATCH_SIZE):
            stored = await self.store.get_batch_content(file_ids[start : start + CONTENT_BATCH_SIZE])
            for node_id, content in stored.items():
                if existing[node_id] != content:
                    await self.store.save_content(node_id, existing[node_id])
                    updated += 1
        return updated

    async def _pull_deletions(
        self, entries: dict[str, str | None], known: dict[str, str], ignored: frozenset[str]
    ) -> int:
        deleted = 0
        removed: list[str] = []
        for path in sorted(known, key=lambda p: (p.count("/"), p)):
            if path in entries or ignored.intersection(path.split("/")):
                continue
            if any(path.startswith(prefix + "/") for prefix in removed):
                continue
            try:
                await self.store.delete(known[path])
            except NotFoundError:
                continue
            removed.append(path)
            deleted += 1
        for path in list(known):
            if path in removed or any(path.startswith(prefix + "/") for prefix in removed):
                del known[path]
        return deleted

    # ==================== Execution ====================

    async def run(self, node_id: str, cancel: asyncio.Event | None = None) -> int | None:
        if self.cache.get_record(node_id) is None:
            await self.refresh()
            if self.cache.get_record(node_id) is None:
                raise NotFoundError(f"Node not found: {node_id}")
        return await self.dispatcher.run(node_id, cancel)
