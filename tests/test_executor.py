"""Tests for ExecutionDispatcher and LocalRuntime process execution."""

import asyncio
import sys

import pytest

from fakes.runtime import FakeRuntime, ListSink
from sandbox.context import RuntimeContext
from sandbox.local import LocalRuntime
from workspace.errors import ExecutionCancelledError, ExecutionError, NotFoundError, ValidationError
from workspace.executor import ExecutionDispatcher
from workspace.models import FileKind, FileRecord
from workspace.tree import TreeCache


def _cache():
    cache = TreeCache()
    cache.rebuild(
        [
            FileRecord(id="src", name="src", parent_id=None, kind=FileKind.DIRECTORY),
            FileRecord(id="x", name="main.js", parent_id="src", kind=FileKind.FILE),
        ]
    )
    return cache


async def _dispatcher(runtime, **kwargs):
    context = RuntimeContext(runtime)
    await context.boot()
    sink = ListSink()
    return sink, ExecutionDispatcher(context, _cache(), sink, **kwargs)


class TestExecutionDispatcher:
    @pytest.mark.asyncio
    async def test_streams_output_then_exit_line(self):
        runtime = FakeRuntime()
        runtime.files["src/main.js"] = "console.log(1+1)"
        sink, dispatcher = await _dispatcher(runtime)

        exit_code = await dispatcher.run("x")

        assert exit_code == 0
        assert runtime.spawned == [("node", ["src/main.js"])]
        assert "Executing src/main.js" in sink.chunks[0]
        # Output arrives chunk by chunk, before the exit line.
        assert sink.chunks[1:3] == ["2", "\n"]
        assert "Process exited with code 0" in sink.chunks[-1]

    @pytest.mark.asyncio
    async def test_interpreter_args(self):
        runtime = FakeRuntime()
        runtime.files["src/main.js"] = ""
        sink, dispatcher = await _dispatcher(runtime, interpreter="deno", interpreter_args=["run"])
        await dispatcher.run("x")
        assert runtime.spawned == [("deno", ["run", "src/main.js"])]

    @pytest.mark.asyncio
    async def test_nonzero_exit_code(self):
        sink, dispatcher = await _dispatcher(FakeRuntime())
        # No mirrored file: the fake interpreter fails to find the module.
        assert await dispatcher.run("x") == 1
        assert "Cannot find module" in sink.text
        assert "Process exited with code 1" in sink.text

    @pytest.mark.asyncio
    async def test_not_ready_writes_notice(self):
        runtime = FakeRuntime(fail_boot=True)
        sink, dispatcher = await _dispatcher(runtime)
        assert await dispatcher.run("x") is None
        assert "not ready" in sink.text
        assert runtime.spawned == []

    @pytest.mark.asyncio
    async def test_unknown_node(self):
        sink, dispatcher = await _dispatcher(FakeRuntime())
        with pytest.raises(NotFoundError):
            await dispatcher.run("missing")

    @pytest.mark.asyncio
    async def test_directory_rejected(self):
        sink, dispatcher = await _dispatcher(FakeRuntime())
        with pytest.raises(ValidationError):
            await dispatcher.run("src")

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        sink, dispatcher = await _dispatcher(FakeRuntime(fail_ops=("spawn",)))
        with pytest.raises(ExecutionError, match="command not found"):
            await dispatcher.run("x")
        assert "Error: node: command not found" in sink.text

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self):
        runtime = FakeRuntime(hang=True)
        runtime.files["src/main.js"] = "console.log(1+1)"
        sink, dispatcher = await _dispatcher(runtime)
        cancel = asyncio.Event()

        task = asyncio.create_task(dispatcher.run("x", cancel))
        await asyncio.sleep(0.01)
        cancel.set()

        with pytest.raises(ExecutionCancelledError):
            await task
        assert runtime.processes[0].killed
        assert "cancelled" in sink.text
        assert "Process exited" not in sink.text

    @pytest.mark.asyncio
    async def test_task_cancellation_kills_process(self):
        runtime = FakeRuntime(hang=True)
        runtime.files["src/main.js"] = ""
        sink, dispatcher = await _dispatcher(runtime)

        task = asyncio.create_task(dispatcher.run("x"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert runtime.processes[0].killed


class TestLocalRuntime:
    @pytest.mark.asyncio
    async def test_runs_python_file(self, tmp_path):
        runtime = LocalRuntime(root=tmp_path / "sandbox")
        sink, dispatcher = await _dispatcher(runtime, interpreter=sys.executable)
        try:
            await runtime.mount({"src": {"directory": {"main.js": {"file": {"contents": "print(1+1)\n"}}}}})
            exit_code = await dispatcher.run("x")
        finally:
            await runtime.close()

        assert exit_code == 0
        assert "2" in sink.text
        assert sink.text.index("2\n") < sink.text.index("Process exited with code 0")

    @pytest.mark.asyncio
    async def test_stderr_is_merged(self, tmp_path):
        runtime = LocalRuntime(root=tmp_path / "sandbox")
        sink, dispatcher = await _dispatcher(runtime, interpreter=sys.executable)
        try:
            await runtime.fs().write_file("src/main.js", "import sys\nsys.stderr.write('oops\\n')\nsys.exit(3)\n")
            assert await dispatcher.run("x") == 3
        finally:
            await runtime.close()
        assert "oops" in sink.text

    @pytest.mark.asyncio
    async def test_cancel_terminates_real_process(self, tmp_path):
        runtime = LocalRuntime(root=tmp_path / "sandbox")
        sink, dispatcher = await _dispatcher(runtime, interpreter=sys.executable)
        cancel = asyncio.Event()
        try:
            await runtime.fs().write_file("src/main.js", "import time\nprint('start', flush=True)\ntime.sleep(30)\n")
            task = asyncio.create_task(dispatcher.run("x", cancel))
            await asyncio.sleep(0.5)
            cancel.set()
            with pytest.raises(ExecutionCancelledError):
                await asyncio.wait_for(task, 10)
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_filesystem_rejects_escapes(self, tmp_path):
        runtime = LocalRuntime(root=tmp_path / "sandbox")
        await runtime.boot()
        try:
            with pytest.raises(ValueError):
                await runtime.fs().write_file("../outside.txt", "x")
            with pytest.raises(ValueError):
                await runtime.fs().rm("", recursive=True)
        finally:
            await runtime.close()

    @pytest.mark.asyncio
    async def test_owned_temp_root_removed_on_close(self):
        runtime = LocalRuntime()
        await runtime.boot()
        root = runtime.root
        assert root.exists()
        await runtime.close()
        assert not root.exists()

    @pytest.mark.asyncio
    async def test_snapshot_lists_tree_and_prunes_ignored(self, tmp_path):
        runtime = LocalRuntime(root=tmp_path / "sandbox")
        await runtime.boot()
        try:
            fs = runtime.fs()
            await fs.write_file("src/main.js", "console.log(1+1)")
            await fs.mkdir("empty", recursive=True)
            await fs.write_file("node_modules/dep/index.js", "dep")
            entries = await fs.snapshot(["node_modules"])
        finally:
            await runtime.close()
        assert entries == {"src": None, "src/main.js": "console.log(1+1)", "empty": None}
