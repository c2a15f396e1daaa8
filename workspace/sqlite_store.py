"""
SQLiteFileStore — aiosqlite implementation of FileStore.

One `files` table; hierarchy is expressed through parent_id. Subtree deletion
and cycle checks are recursive CTEs, so both run as single statements.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from workspace.errors import NotFoundError, PersistenceError, ValidationError
from workspace.models import FileKind, FileRecord, parse_file_kind, validate_name
from workspace.store import FileStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".codepad" / "workspace.db"
MEMORY_DB = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    parent_id TEXT,
    kind TEXT CHECK (kind IN ('file', 'directory')) NOT NULL DEFAULT 'file',
    content TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_files_parent ON files (parent_id);
"""

_ORDER_BY = "ORDER BY CASE kind WHEN 'directory' THEN 0 ELSE 1 END, name ASC"


@contextmanager
def _persistence_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ValidationError(f"{action} failed: {e}") from e
    except sqlite3.Error as e:
        raise PersistenceError(f"{action} failed: {e}") from e


class SQLiteFileStore(FileStore):
    def __init__(self, db_path: Path | str | None = None, *, enforce_unique_names: bool = False):
        self.db_path = db_path or DEFAULT_DB_PATH
        self.enforce_unique_names = enforce_unique_names
        self._conn: aiosqlite.Connection | None = None
        self._durable = False
        self._init_lock = asyncio.Lock()

    @property
    def durable(self) -> bool:
        return self._durable

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        if self._conn is not None:
            return
        async with self._init_lock:
            if self._conn is not None:
                return
            try:
                conn = await self._open(self.db_path)
                self._durable = str(self.db_path) != MEMORY_DB
            except (OSError, sqlite3.Error) as exc:
                # @@@memory-fallback - degraded mode: records live for the process lifetime only
                logger.warning(
                    "Durable store unavailable at %s, falling back to in-memory database: %s",
                    self.db_path,
                    exc,
                )
                conn = await self._open(MEMORY_DB)
                self._durable = False
            self._conn = conn
            logger.info("File store ready (durable=%s)", self._durable)

    async def _open(self, db_path: Path | str) -> aiosqlite.Connection:
        if str(db_path) != MEMORY_DB:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(db_path))
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()
        except sqlite3.Error:
            await conn.close()
            raise
        return conn

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.initialize()
        assert self._conn is not None
        return self._conn

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        conn = await self._connection()
        async with conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        conn = await self._connection()
        async with conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        conn = await self._connection()
        async with conn.execute(sql, params) as cursor:
            rowcount = cursor.rowcount
        await conn.commit()
        return rowcount

    async def _get_kind(self, node_id: str) -> FileKind | None:
        row = await self._fetch_one("SELECT kind FROM files WHERE id = ?", (node_id,))
        return FileKind(row["kind"]) if row else None

    async def _require_kind(self, node_id: str) -> FileKind:
        kind = await self._get_kind(node_id)
        if kind is None:
            raise NotFoundError(f"Node not found: {node_id}")
        return kind

    async def _require_directory(self, parent_id: str) -> None:
        kind = await self._get_kind(parent_id)
        if kind is None:
            raise NotFoundError(f"Parent not found: {parent_id}")
        if kind != FileKind.DIRECTORY:
            raise ValidationError(f"Parent is not a directory: {parent_id}")

    async def _check_unique(self, parent_id: str | None, name: str, exclude_id: str | None = None) -> None:
        if not self.enforce_unique_names:
            return
        row = await self._fetch_one(
            "SELECT id FROM files WHERE parent_id IS ? AND name = ? AND id IS NOT ? LIMIT 1",
            (parent_id, name, exclude_id),
        )
        if row:
            raise ValidationError(f"A node named {name!r} already exists in this directory")

    # ==================== Reads ====================

    async def list(self, include_content: bool = False) -> list[FileRecord]:
        columns = "id, name, parent_id, kind, updated_at"
        if include_content:
            columns += ", content"
        with _persistence_errors("List files"):
            rows = await self._fetch_all(f"SELECT {columns} FROM files {_ORDER_BY}")
        return [self._row_to_record(row, include_content) for row in rows]

    async def get_content(self, node_id: str) -> str:
        with _persistence_errors("Read file"):
            row = await self._fetch_one("SELECT kind, content FROM files WHERE id = ?", (node_id,))
        if not row or row["kind"] == FileKind.DIRECTORY.value:
            raise NotFoundError(f"File not found: {node_id}")
        return row["content"] or ""

    async def get_batch_content(self, node_ids: list[str]) -> dict[str, str]:
        if not node_ids:
            return {}
        placeholders = ",".join("?" * len(node_ids))
        with _persistence_errors("Read files"):
            # @@@param_sql - keep IN-clause parameterized
            rows = await self._fetch_all(
                f"SELECT id, content FROM files WHERE kind = 'file' AND id IN ({placeholders})",
                node_ids,
            )
        return {row["id"]: row["content"] or "" for row in rows}

    # ==================== Mutations ====================

    async def save_content(self, node_id: str, content: str) -> None:
        with _persistence_errors("Save file"):
            kind = await self._require_kind(node_id)
            if kind == FileKind.DIRECTORY:
                raise ValidationError(f"Cannot write content to a directory: {node_id}")
            await self._write(
                "UPDATE files SET content = ?, updated_at = ? WHERE id = ?",
                (content, datetime.now().isoformat(), node_id),
            )

    async def create(
        self,
        name: str,
        parent_id: str | None,
        kind: FileKind,
        content: str = "",
        node_id: str | None = None,
    ) -> str:
        validate_name(name)
        kind = parse_file_kind(kind)
        new_id = node_id or str(uuid.uuid4())
        with _persistence_errors(f"Create {kind}"):
            if parent_id is not None:
                await self._require_directory(parent_id)
            await self._check_unique(parent_id, name)
            await self._write(
                "INSERT INTO files (id, name, parent_id, kind, content, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    new_id,
                    name,
                    parent_id,
                    kind.value,
                    content if kind == FileKind.FILE else None,
                    datetime.now().isoformat(),
                ),
            )
        logger.debug("Created %s %s (%s)", kind, name, new_id)
        return new_id

    async def rename(self, node_id: str, new_name: str) -> None:
        validate_name(new_name)
        with _persistence_errors("Rename"):
            row = await self._fetch_one("SELECT parent_id FROM files WHERE id = ?", (node_id,))
            if not row:
                raise NotFoundError(f"Node not found: {node_id}")
            await self._check_unique(row["parent_id"], new_name, exclude_id=node_id)
            await self._write(
                "UPDATE files SET name = ?, updated_at = ? WHERE id = ?",
                (new_name, datetime.now().isoformat(), node_id),
            )
        logger.debug("Renamed %s to %s", node_id, new_name)

    async def move(self, node_id: str, new_parent_id: str | None) -> None:
        with _persistence_errors("Move"):
            row = await self._fetch_one("SELECT name FROM files WHERE id = ?", (node_id,))
            if not row:
                raise NotFoundError(f"Node not found: {node_id}")
            if new_parent_id is not None:
                await self._require_directory(new_parent_id)
                # Walk up from the new parent; meeting node_id means the move would create a cycle.
                cycle = await self._fetch_one(
                    """
                    WITH RECURSIVE ancestors(id) AS (
                        SELECT ?
                        UNION
                        SELECT f.parent_id FROM files f
                        JOIN ancestors a ON f.id = a.id
                        WHERE f.parent_id IS NOT NULL
                    )
                    SELECT 1 FROM ancestors WHERE id = ? LIMIT 1
                    """,
                    (new_parent_id, node_id),
                )
                if cycle:
                    raise ValidationError(f"Cannot move {node_id} into itself or one of its descendants")
            await self._check_unique(new_parent_id, row["name"], exclude_id=node_id)
            await self._write(
                "UPDATE files SET parent_id = ?, updated_at = ? WHERE id = ?",
                (new_parent_id, datetime.now().isoformat(), node_id),
            )
        logger.debug("Moved %s to parent %s", node_id, new_parent_id)

    async def delete(self, node_id: str) -> None:
        with _persistence_errors("Delete"):
            deleted = await self._write(
                """
                WITH RECURSIVE descendants(id) AS (
                    SELECT id FROM files WHERE id = ?
                    UNION
                    SELECT f.id FROM files f
                    JOIN descendants d ON f.parent_id = d.id
                )
                DELETE FROM files WHERE id IN (SELECT id FROM descendants)
                """,
                (node_id,),
            )
        if deleted == 0:
            raise NotFoundError(f"Node not found: {node_id}")
        logger.debug("Deleted %s and %d descendant(s)", node_id, deleted - 1)

    async def reset(self) -> None:
        with _persistence_errors("Reset"):
            await self._write("DELETE FROM files")
        logger.info("File store reset")

    async def replace_all(self, records: list[FileRecord]) -> None:
        rows = self._replacement_rows(records)
        conn = await self._connection()
        with _persistence_errors("Replace files"):
            try:
                await conn.execute("DELETE FROM files")
                await conn.executemany(
                    "INSERT INTO files (id, name, parent_id, kind, content, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )
                await conn.commit()
            except sqlite3.Error:
                await conn.rollback()
                raise
        logger.info("File store replaced with %d record(s)", len(rows))

    def _replacement_rows(self, records: list[FileRecord]) -> list[tuple[Any, ...]]:
        stamp = datetime.now().isoformat()
        kinds: dict[str, FileKind] = {}
        names: set[tuple[str | None, str]] = set()
        rows = []
        for record in records:
            validate_name(record.name)
            kind = parse_file_kind(record.kind)
            if record.id in kinds:
                raise ValidationError(f"Duplicate node id: {record.id}")
            if record.parent_id is not None:
                parent_kind = kinds.get(record.parent_id)
                if parent_kind is None:
                    raise ValidationError(f"Parent {record.parent_id} of {record.name!r} must precede it")
                if parent_kind != FileKind.DIRECTORY:
                    raise ValidationError(f"Parent is not a directory: {record.parent_id}")
            if self.enforce_unique_names:
                if (record.parent_id, record.name) in names:
                    raise ValidationError(f"A node named {record.name!r} already exists in this directory")
                names.add((record.parent_id, record.name))
            kinds[record.id] = kind
            content = (record.content or "") if kind == FileKind.FILE else None
            rows.append((record.id, record.name, record.parent_id, kind.value, content, record.updated_at or stamp))
        return rows

    @staticmethod
    def _row_to_record(row: aiosqlite.Row, include_content: bool) -> FileRecord:
        return FileRecord(
            id=row["id"],
            name=row["name"],
            parent_id=row["parent_id"],
            kind=FileKind(row["kind"]),
            content=row["content"] if include_content else None,
            updated_at=row["updated_at"],
        )
