"""
Shared protocol package that centralizes wire kinds, message models, framing,
validation and the chunk codec used by both peers.
"""

from .chunking import ChunkSequence, assemble, chunk_count, split
from .commands import MsgType, is_command, normalize_command
from .constants import DEFAULT_CHUNK_SIZE, ENCODING, FRAME_DELIMITER, MAX_PAYLOAD_SIZE
from .errors import (
    ChannelClosed,
    ChannelSendFailure,
    EmptyContentError,
    ErrorCode,
    IncompleteAssemblyError,
    NotConnectedError,
    PeerUnreachable,
    ProtocolError,
    TransferTimeout,
    describe_channel_error,
)
from .framing import async_decode_msg, decode_msg, encode_msg
from .messages import (
    BaseMsg,
    FileChunkMsg,
    FileCompleteMsg,
    FileMetaMsg,
    HeartbeatMsg,
    PeerMessage,
    TextMsg,
    parse_message,
)
from .validator import load_schema, validate_msg

__all__ = [
    "ChunkSequence",
    "assemble",
    "chunk_count",
    "split",
    "MsgType",
    "is_command",
    "normalize_command",
    "DEFAULT_CHUNK_SIZE",
    "ENCODING",
    "FRAME_DELIMITER",
    "MAX_PAYLOAD_SIZE",
    "ErrorCode",
    "ProtocolError",
    "NotConnectedError",
    "EmptyContentError",
    "ChannelSendFailure",
    "ChannelClosed",
    "PeerUnreachable",
    "IncompleteAssemblyError",
    "TransferTimeout",
    "describe_channel_error",
    "encode_msg",
    "decode_msg",
    "async_decode_msg",
    "BaseMsg",
    "HeartbeatMsg",
    "TextMsg",
    "FileMetaMsg",
    "FileChunkMsg",
    "FileCompleteMsg",
    "PeerMessage",
    "parse_message",
    "load_schema",
    "validate_msg",
]
