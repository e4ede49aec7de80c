from __future__ import annotations

import asyncio
import base64
import binascii
import json
from typing import Any

from .constants import BINARY_TAG, ENCODING, FRAME_DELIMITER, MAX_PAYLOAD_SIZE
from .errors import ErrorCode, ProtocolError


def _encode_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {BINARY_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_hook(obj: dict) -> Any:
    if len(obj) == 1 and BINARY_TAG in obj:
        try:
            return base64.b64decode(obj[BINARY_TAG], validate=True)
        except (binascii.Error, TypeError) as exc:
            raise ProtocolError(ErrorCode.INVALID_MESSAGE, f"Bad binary field: {exc}") from exc
    return obj


def encode_msg(msg: dict) -> bytes:
    """Encode message dict into bytes (JSON + delimiter); bytes values become base64."""
    try:
        json_str = json.dumps(msg, ensure_ascii=False, separators=(",", ":"), default=_encode_default)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, f"Encode failed: {exc}") from exc

    data = json_str.encode(ENCODING)
    if len(data) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(ErrorCode.PAYLOAD_TOO_LARGE, "Payload too large for a single frame")
    return data + FRAME_DELIMITER


def decode_msg(data: bytes) -> dict:
    """Decode bytes into dictionary, stripping delimiter."""
    try:
        json_str = data.rstrip(FRAME_DELIMITER).decode(ENCODING)
        decoded = json.loads(json_str, object_hook=_decode_hook)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, f"Decode failed: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, "Frame is not a JSON object")
    return decoded


async def async_decode_msg(reader: asyncio.StreamReader) -> dict:
    """Read a single frame from the stream and decode it."""
    try:
        data = await reader.readuntil(FRAME_DELIMITER)
    except asyncio.LimitOverrunError as exc:
        raise ProtocolError(ErrorCode.PAYLOAD_TOO_LARGE, "Frame exceeds stream buffer limit") from exc
    return decode_msg(data)


__all__ = ["encode_msg", "decode_msg", "async_decode_msg"]
