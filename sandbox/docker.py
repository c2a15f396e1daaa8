"""DockerRuntime — LocalRuntime whose processes run inside a container.

The host root is bind-mounted into the container, so filesystem operations
stay on the host side and only spawn() crosses into Docker.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

from sandbox.base import SpawnedProcess
from sandbox.config import DockerConfig
from sandbox.local import LocalProcess, LocalRuntime

logger = logging.getLogger(__name__)

# $0 is the pid file; the pid survives exec, so kill() can target it in the container.
_PID_WRAPPER = 'echo $$ > "$0"; exec "$@"'


class DockerProcess(LocalProcess):
    """A `docker exec` client plus the pid file of the process it started."""

    def __init__(self, proc: asyncio.subprocess.Process, runtime: DockerRuntime, container_id: str, pid_file: str):
        super().__init__(proc)
        self._runtime = runtime
        self._container_id = container_id
        self.pid_file = pid_file

    async def wait(self) -> int:
        exit_code = await super().wait()
        await self._in_container(f"rm -f {self.pid_file}")
        return exit_code

    async def kill(self) -> None:
        if self._proc.returncode is not None:
            return
        await self._in_container(f'kill -9 "$(cat {self.pid_file})" 2>/dev/null; rm -f {self.pid_file}')
        await super().kill()

    async def _in_container(self, script: str) -> None:
        try:
            await self._runtime._docker("exec", self._container_id, "sh", "-c", script, check=False)
        except (OSError, RuntimeError) as exc:
            logger.warning("docker exec in %s failed: %s", self._container_id, exc)


class DockerRuntime(LocalRuntime):
    """
    Notes:
    - Requires Docker CLI available on host.
    - Uses one container per runtime, kept alive with `sleep infinity`.
    - Spawned commands run under `sh` so they can be killed inside the container.
    """

    def __init__(self, config: DockerConfig | None = None, root: str | Path | None = None):
        super().__init__(root=root)
        self.config = config or DockerConfig()
        self._container_id: str | None = None

    @property
    def name(self) -> str:
        return "docker"

    async def boot(self) -> None:
        await super().boot()
        if self._container_id:
            return
        container_name = f"codepad-{uuid.uuid4().hex[:12]}"
        output = await self._docker(
            "run",
            "-d",
            "--name",
            container_name,
            "--label",
            "codepad.sandbox=1",
            "-v",
            f"{self.root}:{self.config.mount_path}",
            "-w",
            self.config.mount_path,
            self.config.image,
            "sleep",
            "infinity",
        )
        container_id = output.strip()
        if not container_id:
            raise RuntimeError("Failed to create docker container")
        self._container_id = container_id

    def exec_args(self, command: str, args: list[str], pid_file: str) -> list[str]:
        if not self._container_id:
            raise RuntimeError("Docker container is not running")
        return [
            "exec",
            "-w",
            self.config.mount_path,
            self._container_id,
            "sh",
            "-c",
            _PID_WRAPPER,
            pid_file,
            command,
            *args,
        ]

    async def spawn(self, command: str, args: list[str]) -> SpawnedProcess:
        pid_file = f"/tmp/codepad-{uuid.uuid4().hex[:12]}.pid"
        exec_args = self.exec_args(command, args, pid_file)
        proc = await asyncio.create_subprocess_exec(
            "docker",
            *exec_args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        return DockerProcess(proc, self, self._container_id, pid_file)

    async def close(self) -> None:
        container_id, self._container_id = self._container_id, None
        if container_id:
            await self._docker("rm", "-f", container_id, check=False)
        await super().close()

    async def _docker(self, *args: str, check: bool = True) -> str:
        timeout = self.config.command_timeout_sec
        proc = await asyncio.create_subprocess_exec(
            "docker",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError as exc:
            proc.kill()
            raise RuntimeError(f"Docker command timed out after {timeout}s: docker {' '.join(args)}") from exc
        if check and proc.returncode != 0:
            raise RuntimeError(stderr.decode("utf-8", errors="replace").strip() or "Docker command failed")
        return stdout.decode("utf-8", errors="replace")
