"""Wire messages exchanged with the store worker.

Requests and responses are closed discriminated unions keyed on `type`.
Field names on the wire are camelCase (requestId, fileId, parentId, ...);
Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from workspace.models import FileKind, FileRecord


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FileRecordPayload(_WireModel):
    id: str
    name: str
    parent_id: str | None = Field(default=None, alias="parentId")
    kind: FileKind = Field(alias="type")
    content: str | None = None
    updated_at: str | None = Field(default=None, alias="updatedAt")

    @field_validator("kind", mode="before")
    @classmethod
    def _legacy_folder(cls, value: Any) -> Any:
        return FileKind.DIRECTORY if value == "folder" else value

    @classmethod
    def from_record(cls, record: FileRecord) -> FileRecordPayload:
        return cls(
            id=record.id,
            name=record.name,
            parent_id=record.parent_id,
            kind=record.kind,
            content=record.content,
            updated_at=record.updated_at,
        )

    def to_record(self) -> FileRecord:
        return FileRecord(
            id=self.id,
            name=self.name,
            parent_id=self.parent_id,
            kind=self.kind,
            content=self.content,
            updated_at=self.updated_at,
        )


# ==================== Requests ====================


class RequestMessage(_WireModel):
    request_id: str = Field(alias="requestId")


class InitRequest(RequestMessage):
    type: Literal["INIT_DB"] = "INIT_DB"


class ListRequest(RequestMessage):
    type: Literal["GET_FILES"] = "GET_FILES"
    include_content: bool = Field(default=False, alias="includeContent")


class GetContentRequest(RequestMessage):
    type: Literal["GET_FILE_CONTENT"] = "GET_FILE_CONTENT"
    file_id: str = Field(alias="fileId")


class GetBatchContentRequest(RequestMessage):
    type: Literal["GET_BATCH_CONTENT"] = "GET_BATCH_CONTENT"
    file_ids: list[str] = Field(alias="fileIds")


class SaveContentRequest(RequestMessage):
    type: Literal["SAVE_FILE"] = "SAVE_FILE"
    file_id: str = Field(alias="fileId")
    content: str


class CreateRequest(RequestMessage):
    type: Literal["CREATE_FILE"] = "CREATE_FILE"
    name: str
    parent_id: str | None = Field(default=None, alias="parentId")
    node_type: FileKind = Field(alias="nodeType")
    content: str = ""
    node_id: str | None = Field(default=None, alias="nodeId")

    @field_validator("node_type", mode="before")
    @classmethod
    def _legacy_folder(cls, value: Any) -> Any:
        return FileKind.DIRECTORY if value == "folder" else value


class DeleteRequest(RequestMessage):
    type: Literal["DELETE_FILE"] = "DELETE_FILE"
    file_id: str = Field(alias="fileId")


class RenameRequest(RequestMessage):
    type: Literal["RENAME_FILE"] = "RENAME_FILE"
    file_id: str = Field(alias="fileId")
    new_name: str = Field(alias="newName")


class MoveRequest(RequestMessage):
    type: Literal["MOVE_FILE"] = "MOVE_FILE"
    file_id: str = Field(alias="fileId")
    new_parent_id: str | None = Field(default=None, alias="newParentId")


class ResetRequest(RequestMessage):
    type: Literal["RESET_FS"] = "RESET_FS"


class ReplaceAllRequest(RequestMessage):
    type: Literal["REPLACE_ALL"] = "REPLACE_ALL"
    files: list[FileRecordPayload] = Field(default_factory=list)


WorkerRequest = Annotated[
    Union[
        InitRequest,
        ListRequest,
        GetContentRequest,
        GetBatchContentRequest,
        SaveContentRequest,
        CreateRequest,
        DeleteRequest,
        RenameRequest,
        MoveRequest,
        ResetRequest,
        ReplaceAllRequest,
    ],
    Field(discriminator="type"),
]


# ==================== Responses ====================


class ResponseMessage(_WireModel):
    request_id: str = Field(alias="requestId")


class InitResponse(ResponseMessage):
    type: Literal["INIT_DB_SUCCESS"] = "INIT_DB_SUCCESS"
    durable: bool = True


class ListResponse(ResponseMessage):
    type: Literal["GET_FILES_SUCCESS"] = "GET_FILES_SUCCESS"
    files: list[FileRecordPayload] = Field(default_factory=list)


class GetContentResponse(ResponseMessage):
    type: Literal["GET_FILE_CONTENT_SUCCESS"] = "GET_FILE_CONTENT_SUCCESS"
    content: str


class GetBatchContentResponse(ResponseMessage):
    type: Literal["GET_BATCH_CONTENT_SUCCESS"] = "GET_BATCH_CONTENT_SUCCESS"
    contents: dict[str, str] = Field(default_factory=dict)


class SaveContentResponse(ResponseMessage):
    type: Literal["SAVE_FILE_SUCCESS"] = "SAVE_FILE_SUCCESS"


class CreateResponse(ResponseMessage):
    type: Literal["CREATE_FILE_SUCCESS"] = "CREATE_FILE_SUCCESS"
    file_id: str = Field(alias="fileId")


class DeleteResponse(ResponseMessage):
    type: Literal["DELETE_FILE_SUCCESS"] = "DELETE_FILE_SUCCESS"


class RenameResponse(ResponseMessage):
    type: Literal["RENAME_FILE_SUCCESS"] = "RENAME_FILE_SUCCESS"


class MoveResponse(ResponseMessage):
    type: Literal["MOVE_FILE_SUCCESS"] = "MOVE_FILE_SUCCESS"


class ResetResponse(ResponseMessage):
    type: Literal["RESET_FS_SUCCESS"] = "RESET_FS_SUCCESS"


class ReplaceAllResponse(ResponseMessage):
    type: Literal["REPLACE_ALL_SUCCESS"] = "REPLACE_ALL_SUCCESS"


class ErrorResponse(ResponseMessage):
    type: Literal["ERROR"] = "ERROR"
    error: str
    error_kind: str = Field(default="PersistenceError", alias="errorKind")


WorkerResponse = Annotated[
    Union[
        InitResponse,
        ListResponse,
        GetContentResponse,
        GetBatchContentResponse,
        SaveContentResponse,
        CreateResponse,
        DeleteResponse,
        RenameResponse,
        MoveResponse,
        ResetResponse,
        ReplaceAllResponse,
        ErrorResponse,
    ],
    Field(discriminator="type"),
]

REQUEST_ADAPTER: TypeAdapter[WorkerRequest] = TypeAdapter(WorkerRequest)
RESPONSE_ADAPTER: TypeAdapter[WorkerResponse] = TypeAdapter(WorkerResponse)


def dump_message(message: _WireModel) -> dict[str, Any]:
    """Serialize a message to its wire dict."""
    return message.model_dump(by_alias=True, mode="json")
