"""Read a host directory into workspace records.

Ignored directories are recorded but not descended into. Unreadable files
are imported empty.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path

from workspace.models import FileKind, FileRecord

logger = logging.getLogger(__name__)

DEFAULT_SKIPPED_NAMES = ("node_modules", ".git", "dist", ".DS_Store")


def read_directory(root: str | Path, skipped_names: Iterable[str] = DEFAULT_SKIPPED_NAMES) -> list[FileRecord]:
    """Records for every entry under root, parents before children."""
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    return list(_walk(root, None, frozenset(skipped_names)))


def _walk(directory: Path, parent_id: str | None, skipped: frozenset[str]) -> Iterator[FileRecord]:
    stamp = datetime.now().isoformat()
    for entry in sorted(os.scandir(directory), key=lambda e: e.name):
        node_id = str(uuid.uuid4())
        if entry.is_dir(follow_symlinks=False):
            yield FileRecord(id=node_id, name=entry.name, parent_id=parent_id, kind=FileKind.DIRECTORY, updated_at=stamp)
            if entry.name in skipped:
                continue
            yield from _walk(Path(entry.path), node_id, skipped)
        elif entry.is_file():
            yield FileRecord(
                id=node_id,
                name=entry.name,
                parent_id=parent_id,
                kind=FileKind.FILE,
                content=_read_text(Path(entry.path)),
                updated_at=stamp,
            )


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.error("Failed to read %s: %s", path, exc)
        return ""
