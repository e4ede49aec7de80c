from __future__ import annotations

import logging
from typing import Optional

from peer.core.events import EventBus, EventType
from peer.core.session import Session
from shared.protocol.errors import EmptyContentError, NotConnectedError
from shared.protocol.messages import TextMsg

logger = logging.getLogger(__name__)


class MessagingManager:
    """Single-message text path: no tracking state, received text goes straight to listeners."""

    def __init__(self, events: EventBus) -> None:
        self.events = events

    async def send_text(self, session: Optional[Session], content: str) -> TextMsg:
        text = (content or "").strip()
        if not text:
            raise EmptyContentError()
        if session is None or not session.is_open:
            raise NotConnectedError()
        message = TextMsg(content=text)
        await session.channel.send(message.to_wire())
        logger.debug("Sent text (%s chars)", len(text))
        self.events.notice("Text sent")
        return message

    def handle_text(self, message: TextMsg) -> None:
        self.events.emit(EventType.TEXT, content=message.content, timestamp=message.timestamp)
        self.events.notice("New text received")


__all__ = ["MessagingManager"]
