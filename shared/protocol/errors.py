from __future__ import annotations

from enum import IntEnum
from typing import Iterable, Optional


class ErrorCode(IntEnum):
    """Domain specific error codes."""

    INVALID_MESSAGE = 1001
    PAYLOAD_TOO_LARGE = 1002
    NOT_CONNECTED = 1101
    EMPTY_CONTENT = 1102
    CHANNEL_SEND_FAILED = 1201
    CHANNEL_CLOSED = 1202
    PEER_UNREACHABLE = 1203
    INCOMPLETE_ASSEMBLY = 1301
    TRANSFER_TIMEOUT = 1302


class ProtocolError(Exception):
    """Structured protocol exception carrying code + message."""

    default_code = ErrorCode.INVALID_MESSAGE

    def __init__(self, code: Optional[ErrorCode] = None, message: str = "") -> None:
        self.code = code if code is not None else self.default_code
        self.message = message
        super().__init__(f"{self.code.name} ({int(self.code)}): {message}")

    def to_payload(self) -> dict:
        """Map error into a fragment consumable by the UI layer."""
        return {"error_code": int(self.code), "error_message": self.message}


class NotConnectedError(ProtocolError):
    default_code = ErrorCode.NOT_CONNECTED

    def __init__(self, message: str = "No open connection to a peer") -> None:
        super().__init__(message=message)


class EmptyContentError(ProtocolError):
    default_code = ErrorCode.EMPTY_CONTENT

    def __init__(self, message: str = "Text content is empty") -> None:
        super().__init__(message=message)


class ChannelSendFailure(ProtocolError):
    """The channel refused or failed to take a message."""

    default_code = ErrorCode.CHANNEL_SEND_FAILED

    def __init__(self, message: str = "Channel send failed") -> None:
        super().__init__(message=message)


class ChannelClosed(ProtocolError):
    """Session-level: the channel is gone."""

    default_code = ErrorCode.CHANNEL_CLOSED

    def __init__(self, message: str = "Channel closed") -> None:
        super().__init__(message=message)


class PeerUnreachable(ProtocolError):
    """Session-level: the remote peer cannot be reached any more."""

    default_code = ErrorCode.PEER_UNREACHABLE

    def __init__(self, message: str = "Peer unreachable", kind: str = "") -> None:
        self.kind = kind
        super().__init__(message=message)


class IncompleteAssemblyError(ProtocolError):
    default_code = ErrorCode.INCOMPLETE_ASSEMBLY

    def __init__(self, missing: Iterable[int], count: Optional[int] = None) -> None:
        # ``missing`` may be only the first gaps; ``count`` is then the full number.
        self.missing = list(missing)
        self.count = len(self.missing) if count is None else count
        preview = ", ".join(str(i) for i in self.missing[:10])
        if self.count > len(self.missing[:10]):
            preview += ", ..."
        super().__init__(message=f"Missing {self.count} chunk(s): {preview}")


class TransferTimeout(ProtocolError):
    default_code = ErrorCode.TRANSFER_TIMEOUT

    def __init__(self, file_id: str, idle_for: float) -> None:
        self.file_id = file_id
        self.idle_for = idle_for
        super().__init__(message=f"Transfer {file_id} idle for {idle_for:.1f}s")


SESSION_FATAL = (ChannelClosed, PeerUnreachable)

CHANNEL_ERROR_MESSAGES = {
    "peer-unavailable": "Room does not exist or has been closed",
    "network": "Network error, check your connection",
    "server-error": "Signaling server error, try again later",
    "unavailable-id": "This room code is already in use, create a new one",
}


def describe_channel_error(kind: str, detail: str = "") -> str:
    """Human-readable text for a transport error kind."""
    message = CHANNEL_ERROR_MESSAGES.get(kind)
    if message:
        return message
    return f"Connection error: {detail or kind or 'unknown'}"


__all__ = [
    "ErrorCode",
    "ProtocolError",
    "NotConnectedError",
    "EmptyContentError",
    "ChannelSendFailure",
    "ChannelClosed",
    "PeerUnreachable",
    "IncompleteAssemblyError",
    "TransferTimeout",
    "SESSION_FATAL",
    "describe_channel_error",
]
