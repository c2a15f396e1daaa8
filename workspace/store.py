"""
FileStore — durable hierarchical record store.

The store is the source of truth for the workspace; the tree cache and the
runtime mirror are both derived from it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from workspace.models import FileKind, FileRecord


class FileStore(ABC):
    """Abstract interface for file record persistence.

    Implementations: SQLiteFileStore (in-process), RemoteFileStore (worker thread).
    """

    @property
    @abstractmethod
    def durable(self) -> bool:
        """False when running on the in-memory fallback."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open the backing store and ensure the schema. Idempotent."""

    @abstractmethod
    async def list(self, include_content: bool = False) -> list[FileRecord]:
        """All records, directories first, then by name."""

    @abstractmethod
    async def get_content(self, node_id: str) -> str:
        """Content of a file. NotFoundError for unknown ids and directories."""

    @abstractmethod
    async def get_batch_content(self, node_ids: list[str]) -> dict[str, str]:
        """Content of many files keyed by id. Unknown ids are omitted."""

    @abstractmethod
    async def save_content(self, node_id: str, content: str) -> None:
        """Replace file content."""

    @abstractmethod
    async def create(
        self,
        name: str,
        parent_id: str | None,
        kind: FileKind,
        content: str = "",
        node_id: str | None = None,
    ) -> str:
        """Create a record and return its id."""

    @abstractmethod
    async def rename(self, node_id: str, new_name: str) -> None:
        """Change a record's name."""

    @abstractmethod
    async def move(self, node_id: str, new_parent_id: str | None) -> None:
        """Reparent a record. Its own subtree moves with it."""

    @abstractmethod
    async def delete(self, node_id: str) -> None:
        """Remove a record and every transitive descendant in one step."""

    @abstractmethod
    async def reset(self) -> None:
        """Remove all records."""

    @abstractmethod
    async def replace_all(self, records: list[FileRecord]) -> None:
        """Atomically swap every record for the given set, ordered parents first.

        The whole set is validated before anything is written; on any error the
        existing records are left untouched.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Idempotent."""
