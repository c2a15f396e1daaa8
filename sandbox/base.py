"""Sandbox ABCs — unified interface for execution environments.

A SandboxRuntime bundles sub-capabilities by interaction surface:
- fs()    → SandboxFileSystem (consumed by RuntimeMirror)
- spawn() → SpawnedProcess     (consumed by ExecutionDispatcher)

Paths are forward-slash separated and relative to the sandbox root.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from typing import Any

# {"name": {"file": {"contents": str}} | {"directory": MountTree}}
MountTree = dict[str, Any]


class SpawnedProcess(ABC):
    """A process running inside the sandbox."""

    @abstractmethod
    def output(self) -> AsyncIterator[str]:
        """Yield decoded output chunks (stdout and stderr merged) as they arrive."""
        ...

    @abstractmethod
    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        ...

    @abstractmethod
    async def kill(self) -> None:
        """Terminate the process inside the sandbox. No-op if it already exited."""
        ...


class SandboxFileSystem(ABC):
    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        """Write content, replacing any existing file."""
        ...

    @abstractmethod
    async def mkdir(self, path: str, recursive: bool = False) -> None:
        ...

    @abstractmethod
    async def rm(self, path: str, recursive: bool = False) -> None:
        """Remove a file or directory. Missing paths are ignored."""
        ...

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> None:
        ...

    @abstractmethod
    async def snapshot(self, ignored_names: Iterable[str] = ()) -> dict[str, str | None]:
        """Every entry under the root: files map to contents, directories to None.

        Entries named in ignored_names are skipped together with their subtrees.
        """
        ...


class SandboxRuntime(ABC):
    """Abstract sandbox — one instance per workspace, owned by RuntimeContext."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier: 'local', 'docker', ..."""
        ...

    @abstractmethod
    async def boot(self) -> None:
        """Bring the sandbox up. Raises on failure."""
        ...

    @abstractmethod
    async def mount(self, tree: MountTree) -> None:
        """Materialize a whole file tree in one pass."""
        ...

    @abstractmethod
    def fs(self) -> SandboxFileSystem:
        ...

    @abstractmethod
    async def spawn(self, command: str, args: list[str]) -> SpawnedProcess:
        """Start command with args in the sandbox root."""
        ...

    async def close(self) -> None:
        """Clean up on workspace exit. Default: no-op."""
        pass
