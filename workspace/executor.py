"""ExecutionDispatcher — run a workspace file inside the sandbox.

Output is forwarded to the sink chunk by chunk while the process runs; the
exit code follows as a terminal line once the output stream is drained.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Protocol

from sandbox.base import SpawnedProcess
from sandbox.context import RuntimeContext
from workspace.errors import ExecutionCancelledError, ExecutionError, NotFoundError, ValidationError
from workspace.models import FileKind
from workspace.tree import TreeCache

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    def write(self, chunk: str) -> None: ...


def banner_line(path: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
    return f"\r\n\x1b[1;36m➤ {stamp} Executing {path}...\x1b[0m\r\n"


def exit_line(exit_code: int) -> str:
    return f"\r\n\x1b[1;33mProcess exited with code {exit_code}\x1b[0m\r\n"


def error_line(message: str) -> str:
    return f"\x1b[1;31mError: {message}\x1b[0m\r\n"


def notice_line(message: str) -> str:
    return f"\r\n\x1b[1;33m{message}\x1b[0m\r\n"


class ExecutionDispatcher:
    def __init__(
        self,
        context: RuntimeContext,
        cache: TreeCache,
        sink: OutputSink,
        interpreter: str = "node",
        interpreter_args: list[str] | None = None,
    ):
        self.context = context
        self.cache = cache
        self.sink = sink
        self.interpreter = interpreter
        self.interpreter_args = list(interpreter_args or [])

    async def run(self, node_id: str, cancel: asyncio.Event | None = None) -> int | None:
        """Execute node_id and return its exit code.

        Returns None without error when the runtime is not ready yet.

        Raises:
            NotFoundError: node_id does not resolve to a path
            ValidationError: node_id is a directory
            ExecutionError: the process could not be spawned
            ExecutionCancelledError: cancel was set before the process exited
        """
        path = self.cache.resolve_path(node_id)
        if path is None:
            raise NotFoundError(f"Cannot resolve path for node {node_id}")
        record = self.cache.get_record(node_id)
        if record is not None and record.kind == FileKind.DIRECTORY:
            raise ValidationError(f"Cannot execute a directory: {path}")

        if not self.context.ready:
            self.sink.write(notice_line(f"Runtime not ready; cannot run {path} yet."))
            return None

        self.sink.write(banner_line(path))
        try:
            process = await self.context.runtime.spawn(self.interpreter, [*self.interpreter_args, path])
        except Exception as exc:
            logger.error("Failed to spawn %s %s: %s", self.interpreter, path, exc)
            self.sink.write(error_line(str(exc)))
            raise ExecutionError(f"Failed to run {path}: {exc}") from exc

        return await self._supervise(process, path, cancel)

    async def _supervise(self, process: SpawnedProcess, path: str, cancel: asyncio.Event | None) -> int:
        pump = asyncio.create_task(self._pump(process))
        exited = asyncio.create_task(process.wait())
        cancelled = asyncio.create_task(cancel.wait()) if cancel is not None else None
        try:
            waiting = {exited} if cancelled is None else {exited, cancelled}
            await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            if cancelled is not None and cancelled.done() and not exited.done():
                await process.kill()
                await exited
                await pump
                self.sink.write(notice_line(f"Execution of {path} cancelled"))
                raise ExecutionCancelledError(f"Execution of {path} cancelled")
            exit_code = exited.result()
            # Output may still be buffered after exit; drain it before the exit line.
            await pump
        except asyncio.CancelledError:
            await process.kill()
            raise
        except ExecutionError:
            raise
        except Exception as exc:
            await process.kill()
            self.sink.write(error_line(str(exc)))
            raise ExecutionError(f"Execution of {path} failed: {exc}") from exc
        finally:
            for task in (pump, exited, cancelled):
                if task is not None and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        self.sink.write(exit_line(exit_code))
        logger.debug("%s exited with code %s", path, exit_code)
        return exit_code

    async def _pump(self, process: SpawnedProcess) -> None:
        async for chunk in process.output():
            self.sink.write(chunk)
