"""Workspace domain models — durable records and derived tree nodes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from workspace.errors import ValidationError


class FileKind(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"


def parse_file_kind(value: str | FileKind) -> FileKind:
    if isinstance(value, FileKind):
        return value
    lowered = str(value).lower()
    # @@@legacy-folder-kind - older clients send "folder" for directories
    if lowered == "folder":
        return FileKind.DIRECTORY
    try:
        return FileKind(lowered)
    except ValueError as e:
        raise ValidationError(f"Invalid node kind: {value}") from e


@dataclass
class FileRecord:
    """Durable row of the files table.

    content is only ever non-null for files, and is left out of listings
    unless explicitly requested.
    """

    id: str
    name: str
    parent_id: str | None
    kind: FileKind
    content: str | None = None
    updated_at: str | None = None

    @property
    def is_dir(self) -> bool:
        return self.kind == FileKind.DIRECTORY


@dataclass(frozen=True)
class FileNode:
    """Immutable tree node; children is None for files."""

    id: str
    name: str
    parent_id: str | None
    kind: FileKind
    children: tuple[FileNode, ...] | None = None

    @property
    def is_dir(self) -> bool:
        return self.kind == FileKind.DIRECTORY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "type": self.kind.value,
        }
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


def validate_name(name: str) -> str:
    if not name or not name.strip():
        raise ValidationError("Name must not be empty")
    if "/" in name or "\\" in name:
        raise ValidationError(f"Name must not contain a path separator: {name!r}")
    if name in (".", ".."):
        raise ValidationError(f"Reserved name: {name!r}")
    return name
