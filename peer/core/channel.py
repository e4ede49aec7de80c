from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional, Tuple

from shared.protocol.errors import ChannelClosed

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]


class Channel(ABC):
    """
    An already established, ordered, message-oriented link to one peer.

    Transport setup (signaling, NAT traversal, encryption) happens elsewhere;
    the session core only needs ``send``/``close``, the ``is_open`` self
    report, and the three inbound callbacks. Closing locally never fires the
    local close handler, only the remote one.
    """

    def __init__(self) -> None:
        self._on_message: Optional[MessageHandler] = None
        self._on_close: Optional[CloseHandler] = None
        self._on_error: Optional[ErrorHandler] = None

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Hand one message to the transport; raises ChannelSendFailure or ChannelClosed."""

    @abstractmethod
    async def close(self) -> None: ...

    def set_handlers(
        self,
        on_message: Optional[MessageHandler] = None,
        on_close: Optional[CloseHandler] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error
        self._handlers_ready()

    def clear_handlers(self) -> None:
        self._on_message = None
        self._on_close = None
        self._on_error = None

    def _handlers_ready(self) -> None:
        """Hook for adapters that only start reading once someone listens."""

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        handler = self._on_message
        if handler is None:
            logger.debug("No message handler, dropping %s", message.get("type"))
            return
        try:
            await handler(message)
        except Exception as exc:
            logger.exception("Handler error for %s: %s", message.get("type"), exc)

    async def _notify_closed(self) -> None:
        handler = self._on_close
        if handler is None:
            return
        try:
            await handler()
        except Exception as exc:
            logger.exception("Close handler failed: %s", exc)

    async def _notify_error(self, error: Exception) -> None:
        handler = self._on_error
        if handler is None:
            logger.warning("Unhandled channel error: %s", error)
            return
        try:
            await handler(error)
        except Exception as exc:
            logger.exception("Error handler failed: %s", exc)


_CLOSED = object()


class LoopbackChannel(Channel):
    """In-process channel pair; each side delivers in FIFO order from its own pump task."""

    def __init__(self, name: str = "loopback") -> None:
        super().__init__()
        self.name = name
        self.peer: Optional[LoopbackChannel] = None
        self._open = True
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None

    @classmethod
    def pair(cls) -> Tuple["LoopbackChannel", "LoopbackChannel"]:
        left, right = cls("left"), cls("right")
        left.peer, right.peer = right, left
        return left, right

    @property
    def is_open(self) -> bool:
        return self._open and self.peer is not None

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.is_open:
            raise ChannelClosed(f"Loopback channel {self.name} is closed")
        assert self.peer is not None
        self.peer._inbox.put_nowait(dict(message))
        logger.debug("%s -> %s: %s", self.name, self.peer.name, message.get("type"))
        await asyncio.sleep(0)

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        if self.peer is not None and self.peer._open:
            self.peer._inbox.put_nowait(_CLOSED)
        task = self._pump_task
        if task and task is not asyncio.current_task():
            task.cancel()
        self._pump_task = None

    async def report_error(self, error: Exception) -> None:
        """Surface a transport-level error the way a real adapter's error event would."""
        await self._notify_error(error)

    async def wait_delivered(self) -> None:
        """Block until everything queued for this side has been dispatched."""
        await self._inbox.join()

    def _handlers_ready(self) -> None:
        if self._pump_task is None and self._open:
            self._pump_task = asyncio.create_task(self._pump(), name=f"loopback-{self.name}")

    async def _pump(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                if item is _CLOSED:
                    self._open = False
                    await self._notify_closed()
                    return
                await self._dispatch(item)
            finally:
                self._inbox.task_done()


__all__ = ["Channel", "LoopbackChannel", "MessageHandler", "CloseHandler", "ErrorHandler"]
