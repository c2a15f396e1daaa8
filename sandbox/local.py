"""LocalRuntime — sandbox backed by a host directory and local processes."""

from __future__ import annotations

import asyncio
import codecs
import os
import shutil
import tempfile
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

from sandbox.base import MountTree, SandboxFileSystem, SandboxRuntime, SpawnedProcess

OUTPUT_CHUNK_SIZE = 4096


class LocalProcess(SpawnedProcess):
    def __init__(self, proc: asyncio.subprocess.Process, chunk_size: int = OUTPUT_CHUNK_SIZE):
        self._proc = proc
        self._chunk_size = chunk_size

    @property
    def pid(self) -> int:
        return self._proc.pid

    async def output(self) -> AsyncIterator[str]:
        stream = self._proc.stdout
        if stream is None:
            return
        # Chunk boundaries can split multi-byte characters.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self._chunk_size)
            if not data:
                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail
                return
            text = decoder.decode(data)
            if text:
                yield text

    async def wait(self) -> int:
        return await self._proc.wait()

    async def kill(self) -> None:
        if self._proc.returncode is not None:
            return
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass


class LocalFileSystem(SandboxFileSystem):
    """Filesystem rooted at a host directory. Paths may not escape the root."""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def resolve(self, path: str) -> Path:
        target = (self.root / path.strip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes sandbox root: {path}")
        return target

    async def write_file(self, path: str, content: str) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def mkdir(self, path: str, recursive: bool = False) -> None:
        target = self.resolve(path)
        await asyncio.to_thread(target.mkdir, parents=recursive, exist_ok=recursive)

    async def rm(self, path: str, recursive: bool = False) -> None:
        target = self.resolve(path)
        if target == self.root:
            raise ValueError("Refusing to remove the sandbox root")

        def _remove() -> None:
            if target.is_dir() and not target.is_symlink():
                if recursive:
                    shutil.rmtree(target)
                else:
                    target.rmdir()
            else:
                target.unlink(missing_ok=True)

        await asyncio.to_thread(_remove)

    async def rename(self, old_path: str, new_path: str) -> None:
        source = self.resolve(old_path)
        target = self.resolve(new_path)

        def _rename() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            source.rename(target)

        await asyncio.to_thread(_rename)

    async def snapshot(self, ignored_names: Iterable[str] = ()) -> dict[str, str | None]:
        return await asyncio.to_thread(self._snapshot, frozenset(ignored_names))

    def _snapshot(self, ignored: frozenset[str]) -> dict[str, str | None]:
        entries: dict[str, str | None] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(name for name in dirnames if name not in ignored)
            base = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if base == "." else base + "/"
            for name in dirnames:
                entries[prefix + name] = None
            for name in sorted(filenames):
                if name in ignored:
                    continue
                entries[prefix + name] = (Path(dirpath) / name).read_text(encoding="utf-8", errors="replace")
        return entries

    async def write_tree(self, tree: MountTree) -> None:
        await asyncio.to_thread(self._write_tree, self.root, tree)

    def _write_tree(self, base: Path, tree: MountTree) -> None:
        for name, entry in tree.items():
            if not name or "/" in name or name in (".", ".."):
                raise ValueError(f"Invalid entry name in mount tree: {name!r}")
            target = base / name
            if "directory" in entry:
                target.mkdir(parents=True, exist_ok=True)
                self._write_tree(target, entry["directory"])
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(entry["file"]["contents"], encoding="utf-8")


class LocalRuntime(SandboxRuntime):
    """Runs processes directly on the host, with cwd set to the sandbox root.

    No isolation beyond the working directory; use DockerRuntime for that.
    """

    def __init__(self, root: str | Path | None = None):
        self._root_arg = root
        self._root: Path | None = None
        self._owns_root = False
        self._fs: LocalFileSystem | None = None

    @property
    def name(self) -> str:
        return "local"

    @property
    def root(self) -> Path:
        if self._root is None:
            raise RuntimeError("Sandbox runtime is not booted")
        return self._root

    async def boot(self) -> None:
        if self._root is not None:
            return
        if self._root_arg:
            root = Path(self._root_arg).expanduser()
            root.mkdir(parents=True, exist_ok=True)
        else:
            root = Path(tempfile.mkdtemp(prefix="codepad-"))
            self._owns_root = True
        self._root = root.resolve()
        self._fs = LocalFileSystem(self._root)

    def fs(self) -> LocalFileSystem:
        if self._fs is None:
            raise RuntimeError("Sandbox runtime is not booted")
        return self._fs

    async def mount(self, tree: MountTree) -> None:
        await self.fs().write_tree(tree)

    async def spawn(self, command: str, args: list[str]) -> SpawnedProcess:
        env = os.environ.copy()
        env.setdefault("PYTHONUNBUFFERED", "1")
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=str(self.root),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        return LocalProcess(proc)

    async def close(self) -> None:
        root, self._root = self._root, None
        self._fs = None
        if root is not None and self._owns_root:
            await asyncio.to_thread(shutil.rmtree, root, True)
        self._owns_root = False
