from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional

from shared.protocol import framing
from shared.protocol.errors import ChannelClosed, ChannelSendFailure, ErrorCode, ProtocolError

from .channel import Channel

logger = logging.getLogger(__name__)


class StreamChannel(Channel):
    """
    Channel over an already connected asyncio stream pair, one JSON frame per
    message. The reader must be created with
    ``limit=shared.protocol.constants.STREAM_READER_LIMIT`` so a full chunk
    frame fits the buffer.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__()
        self.reader = reader
        self.writer = writer
        self.connected: bool = True
        self._receive_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.connected and not self.writer.is_closing()

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.is_open:
            raise ChannelClosed("Stream channel is closed")
        try:
            payload = framing.encode_msg(message)
        except ProtocolError as exc:
            raise ChannelSendFailure(f"Cannot frame {message.get('type')}: {exc.message}") from exc
        try:
            self.writer.write(payload)
            await self.writer.drain()
            logger.debug("Sent %s (%s bytes)", message.get("type"), len(payload))
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError) as exc:
            logger.warning("Connection lost during send: %s", exc)
            self.connected = False
            raise ChannelClosed(f"Connection lost: {exc}") from exc
        except OSError as exc:
            logger.warning("Send failed: %s", exc)
            raise ChannelSendFailure(f"Send failed: {exc}") from exc

    async def close(self) -> None:
        self.connected = False
        task = self._receive_task
        if task and task is not asyncio.current_task():
            task.cancel()
        self._receive_task = None
        if not self.writer.is_closing():
            self.writer.close()
            with contextlib.suppress(ConnectionError):
                await self.writer.wait_closed()
            logger.info("Stream channel closed")

    def _handlers_ready(self) -> None:
        if self._receive_task is None and self.connected:
            self._receive_task = asyncio.create_task(self._receive_loop(), name="stream-recv-loop")

    async def _receive_loop(self) -> None:
        while True:
            try:
                raw = await framing.async_decode_msg(self.reader)
                await self._dispatch(raw)
            except asyncio.CancelledError:
                break
            except ProtocolError as exc:
                if exc.code == ErrorCode.PAYLOAD_TOO_LARGE:
                    # The oversized frame is still in the buffer; the stream cannot resync.
                    logger.error("Receive loop terminated: %s", exc)
                    self.connected = False
                    await self._notify_error(ChannelClosed(exc.message))
                    break
                logger.warning("Protocol error: %s", exc)
            except (EOFError, ConnectionError, OSError) as exc:
                logger.info("Receive loop terminated: %s", exc)
                self.connected = False
                await self._notify_closed()
                break


__all__ = ["StreamChannel"]
