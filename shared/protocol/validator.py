from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from .commands import MsgType, normalize_command
from .errors import ErrorCode, ProtocolError

SCHEMA_DIR = Path(__file__).parent / "schemas"

# Mapping kind -> schema filename (relative to SCHEMA_DIR)
SCHEMA_REGISTRY: Dict[str, str] = {
    MsgType.HEARTBEAT.value: "heartbeat.json",
    MsgType.TEXT.value: "text.json",
    MsgType.FILE_META.value: "file-meta.json",
    MsgType.FILE_CHUNK.value: "file-chunk.json",
    MsgType.FILE_COMPLETE.value: "file-complete.json",
}


def _schema_path(kind: str) -> Optional[Path]:
    filename = SCHEMA_REGISTRY.get(kind)
    if not filename:
        return None
    path = SCHEMA_DIR / filename
    return path if path.exists() else None


@lru_cache(maxsize=16)
def load_schema(kind: str) -> Optional[dict]:
    """Load JSON schema for a wire kind if present."""
    path = _schema_path(normalize_command(kind))
    if not path:
        return None
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def validate_msg(msg: Dict[str, Any], schema: Optional[dict] = None) -> None:
    """Validate an inbound wire dict against its kind's json-schema; unknown kinds pass."""
    if not isinstance(msg, dict):
        raise ProtocolError(ErrorCode.INVALID_MESSAGE, "Message must be a mapping")
    if not schema:
        kind = msg.get("type")
        schema = load_schema(kind) if isinstance(kind, str) else None
    if schema:
        try:
            jsonschema.validate(instance=msg, schema=schema)
        except jsonschema.ValidationError as exc:
            raise ProtocolError(ErrorCode.INVALID_MESSAGE, f"Schema validation failed: {exc.message}") from exc


__all__ = ["SCHEMA_REGISTRY", "load_schema", "validate_msg"]
