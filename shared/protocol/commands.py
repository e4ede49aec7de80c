from __future__ import annotations

from enum import StrEnum
from typing import Union


class MsgType(StrEnum):
    """
    Canonical wire kinds exchanged between two peers.
    The value is what travels in the message's ``type`` field.
    """

    HEARTBEAT = "heartbeat"
    TEXT = "text"
    FILE_META = "file-meta"
    FILE_CHUNK = "file-chunk"
    FILE_COMPLETE = "file-complete"


def normalize_command(command: Union[str, MsgType]) -> str:
    """Convert enum/string into canonical kind text."""
    return command.value if isinstance(command, MsgType) else str(command)


def is_command(value: str) -> bool:
    """Check if `value` is a known wire kind."""
    try:
        MsgType(value)
        return True
    except ValueError:
        return False


__all__ = [
    "MsgType",
    "normalize_command",
    "is_command",
]
