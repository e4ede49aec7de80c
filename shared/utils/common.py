from __future__ import annotations

import secrets
import string
import time
from typing import Optional
from uuid import uuid4

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_file_id(prefix: str = "file") -> str:
    """Transfer identifiers look like ``file_<ms>_<9 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{timestamp_ms()}_{suffix}"


def generate_session_id(prefix: Optional[str] = None) -> str:
    base = uuid4().hex
    return f"{prefix}-{base}" if prefix else base


def timestamp_ms() -> int:
    """Current wall clock in milliseconds, the unit used on the wire."""
    return int(time.time() * 1000)


__all__ = ["generate_file_id", "generate_session_id", "timestamp_ms"]
