from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from shared.utils.common import timestamp_ms

from .commands import is_command
from .errors import ErrorCode, ProtocolError


class BaseMsg(BaseModel):
    """Base envelope shared by every wire kind."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class HeartbeatMsg(BaseMsg):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: int = Field(default_factory=timestamp_ms, description="Sender clock, ms since epoch")


class TextMsg(BaseMsg):
    type: Literal["text"] = "text"
    content: str
    timestamp: int = Field(default_factory=timestamp_ms)


class FileMetaMsg(BaseMsg):
    type: Literal["file-meta"] = "file-meta"
    file_id: str = Field(alias="fileId", min_length=1)
    name: str
    size: int = Field(ge=0, description="Total artifact size in bytes")
    file_type: str = Field(default="", alias="fileType", description="Declared content type")
    total_chunks: int = Field(alias="totalChunks", ge=0)


class FileChunkMsg(BaseMsg):
    type: Literal["file-chunk"] = "file-chunk"
    file_id: str = Field(alias="fileId", min_length=1)
    chunk_index: int = Field(alias="chunkIndex", ge=0)
    data: bytes


class FileCompleteMsg(BaseMsg):
    type: Literal["file-complete"] = "file-complete"
    file_id: str = Field(alias="fileId", min_length=1)


PeerMessage = Annotated[
    Union[HeartbeatMsg, TextMsg, FileMetaMsg, FileChunkMsg, FileCompleteMsg],
    Field(discriminator="type"),
]

_PEER_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(PeerMessage)


def parse_message(data: Dict[str, Any]) -> Optional[BaseMsg]:
    """
    Turn an inbound wire dict into its typed model.
    Unknown kinds return None; a known kind with bad fields raises ProtocolError.
    """
    if not isinstance(data, dict):
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, "Message must be a mapping")
    kind = data.get("type")
    if not isinstance(kind, str) or not is_command(kind):
        return None
    try:
        return _PEER_MESSAGE_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, f"Message validation failed: {exc}") from exc


__all__ = [
    "BaseMsg",
    "HeartbeatMsg",
    "TextMsg",
    "FileMetaMsg",
    "FileChunkMsg",
    "FileCompleteMsg",
    "PeerMessage",
    "parse_message",
]
