"""
Store worker and request channel.

StoreWorker runs a FileStore on a dedicated thread with its own event loop.
RequestChannel correlates requests with responses by requestId, and
RemoteFileStore exposes the pair as an ordinary FileStore.

    worker thread                      caller loop
    ─────────────                      ───────────
    queue ← post(payload)  ←────────── RequestChannel.request()
    _dispatch → store op
    on_response(payload) ──────────→   RequestChannel.handle_response()
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar, assert_never

from pydantic import ValidationError as PydanticValidationError

from workspace.errors import ERROR_KINDS, PersistenceError, TimedOutError, WorkspaceError
from workspace.messages import (
    REQUEST_ADAPTER,
    RESPONSE_ADAPTER,
    CreateRequest,
    CreateResponse,
    DeleteRequest,
    DeleteResponse,
    ErrorResponse,
    FileRecordPayload,
    GetBatchContentRequest,
    GetBatchContentResponse,
    GetContentRequest,
    GetContentResponse,
    InitRequest,
    InitResponse,
    ListRequest,
    ListResponse,
    MoveRequest,
    MoveResponse,
    RenameRequest,
    RenameResponse,
    ReplaceAllRequest,
    ReplaceAllResponse,
    ResetRequest,
    ResetResponse,
    SaveContentRequest,
    SaveContentResponse,
    RequestMessage,
    ResponseMessage,
    WorkerRequest,
    WorkerResponse,
    dump_message,
)
from workspace.models import FileKind, FileRecord, parse_file_kind
from workspace.store import FileStore

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

ResponseT = TypeVar("ResponseT", bound=ResponseMessage)


async def handle_request(store: FileStore, request: WorkerRequest) -> WorkerResponse:
    """Run one request against the store. Every request variant must be handled here."""
    request_id = request.request_id
    match request:
        case InitRequest():
            await store.initialize()
            return InitResponse(request_id=request_id, durable=store.durable)
        case ListRequest():
            records = await store.list(include_content=request.include_content)
            return ListResponse(
                request_id=request_id,
                files=[FileRecordPayload.from_record(record) for record in records],
            )
        case GetContentRequest():
            content = await store.get_content(request.file_id)
            return GetContentResponse(request_id=request_id, content=content)
        case GetBatchContentRequest():
            contents = await store.get_batch_content(request.file_ids)
            return GetBatchContentResponse(request_id=request_id, contents=contents)
        case SaveContentRequest():
            await store.save_content(request.file_id, request.content)
            return SaveContentResponse(request_id=request_id)
        case CreateRequest():
            file_id = await store.create(
                request.name,
                request.parent_id,
                request.node_type,
                request.content,
                node_id=request.node_id,
            )
            return CreateResponse(request_id=request_id, file_id=file_id)
        case DeleteRequest():
            await store.delete(request.file_id)
            return DeleteResponse(request_id=request_id)
        case RenameRequest():
            await store.rename(request.file_id, request.new_name)
            return RenameResponse(request_id=request_id)
        case MoveRequest():
            await store.move(request.file_id, request.new_parent_id)
            return MoveResponse(request_id=request_id)
        case ResetRequest():
            await store.reset()
            return ResetResponse(request_id=request_id)
        case ReplaceAllRequest():
            await store.replace_all([payload.to_record() for payload in request.files])
            return ReplaceAllResponse(request_id=request_id)
        case _:
            assert_never(request)


class StoreWorker:
    """Owns a FileStore on its own thread; processes requests one at a time."""

    def __init__(self, store_factory: Callable[[], FileStore]):
        self._store_factory = store_factory
        self._on_response: Callable[[dict[str, Any]], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[dict[str, Any] | None] | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._start_error: BaseException | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, on_response: Callable[[dict[str, Any]], None]) -> None:
        """Start the worker thread. on_response is called from the worker thread."""
        if self.running:
            self._on_response = on_response
            return
        self._on_response = on_response
        self._ready.clear()
        self._start_error = None
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="store-worker", daemon=True)
        self._thread.start()
        self._ready.wait()
        if self._start_error is not None:
            self._thread.join()
            self._thread = None
            raise PersistenceError(f"Store worker failed to start: {self._start_error}") from self._start_error

    def post(self, payload: dict[str, Any]) -> None:
        """Enqueue a request payload. Safe to call from any thread."""
        if not self.running or self._loop is None or self._queue is None:
            raise PersistenceError("Store worker is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, payload)

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running or self._loop is None or self._queue is None:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._main())
        finally:
            self._loop.close()

    async def _main(self) -> None:
        self._queue = asyncio.Queue()
        try:
            store = self._store_factory()
        except Exception as exc:
            self._start_error = exc
            return
        finally:
            self._ready.set()
        try:
            while True:
                payload = await self._queue.get()
                if payload is None:
                    break
                await self._dispatch(store, payload)
        finally:
            await store.close()

    async def _dispatch(self, store: FileStore, payload: dict[str, Any]) -> None:
        request_id = payload.get("requestId") if isinstance(payload, dict) else None
        try:
            request = REQUEST_ADAPTER.validate_python(payload)
        except PydanticValidationError as exc:
            if not request_id:
                logger.warning("Dropping malformed worker request without requestId: %.200r", payload)
                return
            self._respond(ErrorResponse(request_id=str(request_id), error=f"Malformed request: {exc}", error_kind="ValidationError"))
            return

        try:
            response = await handle_request(store, request)
        except WorkspaceError as exc:
            response = ErrorResponse(request_id=request.request_id, error=str(exc), error_kind=type(exc).__name__)
        except Exception as exc:
            logger.exception("Store worker failed on %s", request.type)
            response = ErrorResponse(request_id=request.request_id, error=str(exc), error_kind="PersistenceError")
        self._respond(response)

    def _respond(self, response: WorkerResponse) -> None:
        if self._on_response is None:
            logger.warning("No response handler; dropping %s", response.type)
            return
        self._on_response(dump_message(response))


class RequestChannel:
    """Correlates posted requests with their responses.

    Each pending call resolves exactly once: on its response, on its error
    response, or on timeout. Responses for unknown ids are logged and dropped.
    """

    def __init__(self, post: Callable[[dict[str, Any]], None], timeout: float | None = DEFAULT_REQUEST_TIMEOUT):
        self._post = post
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future[WorkerResponse]] = {}
        self._counter = itertools.count(1)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(self, request_cls: type[RequestMessage], **fields: Any) -> WorkerResponse:
        request_id = f"req_{next(self._counter)}"
        message = request_cls(request_id=request_id, **fields)
        future: asyncio.Future[WorkerResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._post(dump_message(message))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except TimeoutError as exc:
            raise TimedOutError(f"{message.type} ({request_id}) timed out after {self.timeout}s") from exc
        finally:
            self._pending.pop(request_id, None)

    def handle_response(self, payload: dict[str, Any]) -> None:
        """Must run on the loop that issued the requests."""
        request_id = payload.get("requestId") if isinstance(payload, dict) else None
        future = self._pending.get(request_id) if request_id else None
        if future is None or future.done():
            logger.warning("Dropping response for unknown request %s (%s)", request_id, payload.get("type") if isinstance(payload, dict) else None)
            return
        try:
            response = RESPONSE_ADAPTER.validate_python(payload)
        except PydanticValidationError as exc:
            future.set_exception(PersistenceError(f"Malformed response for {request_id}: {exc}"))
            return
        if isinstance(response, ErrorResponse):
            error_cls = ERROR_KINDS.get(response.error_kind, PersistenceError)
            future.set_exception(error_cls(response.error))
            return
        future.set_result(response)

    async def call(self, request_cls: type[RequestMessage], response_cls: type[ResponseT], **fields: Any) -> ResponseT:
        response = await self.request(request_cls, **fields)
        if not isinstance(response, response_cls):
            raise PersistenceError(f"Unexpected response {response.type} to {request_cls.__name__}")
        return response


class RemoteFileStore(FileStore):
    """FileStore whose operations run on a StoreWorker thread."""

    def __init__(self, worker: StoreWorker, timeout: float | None = DEFAULT_REQUEST_TIMEOUT):
        self.worker = worker
        self.timeout = timeout
        self._channel: RequestChannel | None = None
        self._durable = False

    @property
    def durable(self) -> bool:
        return self._durable

    def _ensure_channel(self) -> RequestChannel:
        if self._channel is None or not self.worker.running:
            loop = asyncio.get_running_loop()
            channel = RequestChannel(self.worker.post, timeout=self.timeout)

            def _on_response(payload: dict[str, Any]) -> None:
                loop.call_soon_threadsafe(channel.handle_response, payload)

            self.worker.start(_on_response)
            self._channel = channel
        return self._channel

    async def initialize(self) -> None:
        response = await self._ensure_channel().call(InitRequest, InitResponse)
        self._durable = response.durable

    async def list(self, include_content: bool = False) -> list[FileRecord]:
        response = await self._ensure_channel().call(ListRequest, ListResponse, include_content=include_content)
        return [payload.to_record() for payload in response.files]

    async def get_content(self, node_id: str) -> str:
        response = await self._ensure_channel().call(GetContentRequest, GetContentResponse, file_id=node_id)
        return response.content

    async def get_batch_content(self, node_ids: list[str]) -> dict[str, str]:
        if not node_ids:
            return {}
        response = await self._ensure_channel().call(
            GetBatchContentRequest, GetBatchContentResponse, file_ids=list(node_ids)
        )
        return dict(response.contents)

    async def save_content(self, node_id: str, content: str) -> None:
        await self._ensure_channel().call(SaveContentRequest, SaveContentResponse, file_id=node_id, content=content)

    async def create(
        self,
        name: str,
        parent_id: str | None,
        kind: FileKind,
        content: str = "",
        node_id: str | None = None,
    ) -> str:
        kind = parse_file_kind(kind)
        response = await self._ensure_channel().call(
            CreateRequest,
            CreateResponse,
            name=name,
            parent_id=parent_id,
            node_type=kind,
            content=content,
            node_id=node_id,
        )
        return response.file_id

    async def rename(self, node_id: str, new_name: str) -> None:
        await self._ensure_channel().call(RenameRequest, RenameResponse, file_id=node_id, new_name=new_name)

    async def move(self, node_id: str, new_parent_id: str | None) -> None:
        await self._ensure_channel().call(MoveRequest, MoveResponse, file_id=node_id, new_parent_id=new_parent_id)

    async def delete(self, node_id: str) -> None:
        await self._ensure_channel().call(DeleteRequest, DeleteResponse, file_id=node_id)

    async def reset(self) -> None:
        await self._ensure_channel().call(ResetRequest, ResetResponse)

    async def replace_all(self, records: list[FileRecord]) -> None:
        await self._ensure_channel().call(
            ReplaceAllRequest,
            ReplaceAllResponse,
            files=[FileRecordPayload.from_record(record) for record in records],
        )

    async def close(self) -> None:
        if self.worker.running:
            await asyncio.to_thread(self.worker.stop)
        self._channel = None
