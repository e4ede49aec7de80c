from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class EventType(StrEnum):
    STATUS = "status"
    PROGRESS = "progress"
    TRANSFER_COMPLETE = "transfer_complete"
    TRANSFER_FAILED = "transfer_failed"
    TRANSFER_TIMEOUT = "transfer_timeout"
    TEXT = "text"
    NOTICE = "notice"


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Severity(StrEnum):
    INFO = "info"
    ERROR = "error"


class EventBus:
    """Synchronous observer hub between the session core and whatever UI sits on top."""

    def __init__(self) -> None:
        self._listeners: List[Tuple[Listener, Optional[Set[str]]]] = []

    def subscribe(self, listener: Listener, kinds: Optional[Iterable[EventType]] = None) -> Callable[[], None]:
        entry = (listener, {str(kind) for kind in kinds} if kinds is not None else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def emit(self, kind: EventType, **fields: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": str(kind), **fields}
        for listener, kinds in list(self._listeners):
            if kinds is not None and payload["type"] not in kinds:
                continue
            try:
                listener(payload)
            except Exception as exc:
                logger.exception("Event listener failed for %s: %s", payload["type"], exc)
        return payload

    def notice(self, message: str, severity: Severity = Severity.INFO) -> Dict[str, Any]:
        """User-facing message; exactly one per reported failure."""
        return self.emit(EventType.NOTICE, severity=str(severity), message=message)


def queue_listener(ui_queue, channel: str = "peer") -> Listener:
    """Adapt the bus to a UI thread that polls a ``queue.Queue``."""

    def _put(payload: Dict[str, Any]) -> None:
        ui_queue.put((channel, payload))

    return _put


__all__ = ["EventBus", "EventType", "ConnectionStatus", "Severity", "Listener", "queue_listener"]
