"""Workspace — persistent file tree with a sandbox mirror and file execution.

Usage:
    from workspace import WorkspaceConfig, create_workspace

    service = create_workspace(WorkspaceConfig.load(), sink=sys.stdout)
    tree = await service.initialize()
"""

from __future__ import annotations

from sandbox import RuntimeContext, create_runtime
from workspace.channel import RemoteFileStore, StoreWorker
from workspace.config import WorkspaceConfig
from workspace.errors import (
    ExecutionCancelledError,
    ExecutionError,
    NotFoundError,
    PersistenceError,
    SyncError,
    TimedOutError,
    ValidationError,
    WorkspaceError,
)
from workspace.executor import OutputSink
from workspace.models import FileKind, FileNode, FileRecord
from workspace.service import IDEService, MutationResult
from workspace.sqlite_store import SQLiteFileStore
from workspace.store import FileStore


def create_store(config: WorkspaceConfig) -> FileStore:
    def _sqlite() -> SQLiteFileStore:
        return SQLiteFileStore(config.db_path, enforce_unique_names=config.enforce_unique_names)

    if config.use_worker:
        return RemoteFileStore(StoreWorker(_sqlite), timeout=config.request_timeout)
    return _sqlite()


def create_workspace(config: WorkspaceConfig, sink: OutputSink) -> IDEService:
    """Factory: build the whole workspace object graph from config."""
    context = RuntimeContext(create_runtime(config.sandbox))
    return IDEService(
        create_store(config),
        context,
        sink,
        interpreter=config.sandbox.interpreter,
        interpreter_args=config.sandbox.interpreter_args,
        ignored_names=config.ignored_names,
        skipped_names=config.import_skipped_names,
    )


__all__ = [
    "ExecutionCancelledError",
    "ExecutionError",
    "FileKind",
    "FileNode",
    "FileRecord",
    "FileStore",
    "IDEService",
    "MutationResult",
    "NotFoundError",
    "OutputSink",
    "PersistenceError",
    "RemoteFileStore",
    "SQLiteFileStore",
    "StoreWorker",
    "SyncError",
    "TimedOutError",
    "ValidationError",
    "WorkspaceConfig",
    "WorkspaceError",
    "create_store",
    "create_workspace",
]
