from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from peer.config import PEER_CONFIG
from peer.core.channel import Channel
from peer.core.events import ConnectionStatus, EventBus, EventType, Severity
from peer.core.heartbeat import HeartbeatMonitor
from peer.core.session import Role, Session
from peer.features.file_transfer import FileTransferManager
from peer.features.messaging import MessagingManager
from peer.features.transfers import Artifact, OutboundTransfer, TransferTracker
from peer.workers.timeout_sweeper import TimeoutSweeper
from shared.protocol import validator
from shared.protocol.commands import MsgType
from shared.protocol.errors import (
    ChannelClosed,
    ChannelSendFailure,
    NotConnectedError,
    PeerUnreachable,
    ProtocolError,
    SESSION_FATAL,
    describe_channel_error,
)
from shared.protocol.messages import (
    FileChunkMsg,
    FileCompleteMsg,
    FileMetaMsg,
    HeartbeatMsg,
    TextMsg,
    parse_message,
)

logger = logging.getLogger(__name__)


class SessionController:
    """
    Owns the single live peer session and the command surface offered to the UI.

    The UI layer calls ``attach`` once its channel is open, then ``send_file``,
    ``send_text``, ``disconnect`` and ``on_visibility_change``; everything it
    needs to render comes back through ``self.events``.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, events: Optional[EventBus] = None) -> None:
        self.config = config or PEER_CONFIG
        self.events = events or EventBus()
        self.tracker = TransferTracker(
            self.events,
            transfer_timeout=float(self.config["transfer_timeout"]),
            chunk_size=int(self.config["chunk_size"]),
            history_limit=int(self.config["history_limit"]),
        )
        self.files = FileTransferManager(self.tracker, self.config)
        self.messaging = MessagingManager(self.events)
        self.heartbeat = HeartbeatMonitor(
            self._on_heartbeat_dead,
            interval=float(self.config["heartbeat_interval"]),
            timeout=float(self.config["heartbeat_timeout"]),
        )
        self.sweeper = TimeoutSweeper(self.tracker, interval=float(self.config["transfer_check_interval"]))
        self.session: Optional[Session] = None

    @property
    def connected(self) -> bool:
        return self.session is not None and self.session.is_open

    async def attach(self, channel: Channel, role: Union[Role, str] = Role.INITIATOR) -> Session:
        """Start a session on a freshly opened channel, replacing any previous one."""
        if self.session is not None:
            await self._teardown("replaced by a new connection")
        session = Session(role=Role(role), channel=channel)
        self.session = session
        channel.set_handlers(
            on_message=self.handle_message,
            on_close=self._on_channel_close,
            on_error=self._on_channel_error,
        )
        self.heartbeat.start(channel)
        self.sweeper.start()
        logger.info("Session %s active as %s", session.session_id, session.role)
        self.events.emit(
            EventType.STATUS,
            status=str(ConnectionStatus.CONNECTED),
            role=str(session.role),
            session_id=session.session_id,
        )
        self.events.notice("Connected")
        return session

    async def send_file(self, artifact: Artifact) -> OutboundTransfer:
        session = self._require_session()
        try:
            return await self.files.send_file(session, artifact)
        except ChannelClosed:
            await self._teardown("channel closed while sending a file", notice="Connection lost")
            raise

    async def send_files(self, artifacts: Iterable[Artifact]) -> List[OutboundTransfer]:
        """Send several artifacts back to back; the first refusal stops the batch."""
        self._require_session()
        return [await self.send_file(artifact) for artifact in artifacts]

    async def send_text(self, content: str) -> TextMsg:
        try:
            return await self.messaging.send_text(self.session, content)
        except ChannelClosed:
            await self._teardown("channel closed while sending text", notice="Connection lost")
            raise
        except ChannelSendFailure:
            self.events.notice("Sending text failed", Severity.ERROR)
            raise

    async def disconnect(self) -> None:
        """Close the channel and drop every in-flight transfer without further notices."""
        if self.session is None:
            return
        await self._teardown("disconnected locally", notice="Disconnected", severity=Severity.INFO)

    async def on_visibility_change(self, visible: bool) -> bool:
        """Returning to the foreground probes the link at once instead of waiting for the next tick."""
        if not visible or self.session is None:
            logger.debug("Visibility changed (visible=%s)", visible)
            return self.connected
        return await self.heartbeat.probe()

    async def handle_message(self, raw: Dict[str, Any]) -> None:
        session = self.session
        if session is None or not session.active:
            return
        kind = raw.get("type") if isinstance(raw, dict) else None
        if self.config["liveness_on_any_message"] or kind == MsgType.HEARTBEAT:
            self.heartbeat.touch()

        try:
            validator.validate_msg(raw)
            message = parse_message(raw)
        except ProtocolError as exc:
            logger.warning("Dropping invalid %s message: %s", kind, exc)
            return

        match message:
            case HeartbeatMsg():
                pass
            case TextMsg():
                self.messaging.handle_text(message)
            case FileMetaMsg():
                self.files.handle_meta(message)
            case FileChunkMsg():
                self.files.handle_chunk(message)
            case FileCompleteMsg():
                self.files.handle_complete(message)
            case _:
                logger.debug("Ignoring message of unknown kind %r", kind)

    def _require_session(self) -> Session:
        session = self.session
        if session is None or not session.is_open:
            raise NotConnectedError()
        return session

    async def _on_channel_close(self) -> None:
        await self._teardown("channel closed by peer", notice="Peer disconnected")

    async def _on_channel_error(self, error: Exception) -> None:
        if isinstance(error, PeerUnreachable):
            await self._teardown(f"peer unreachable: {error}", notice=describe_channel_error(error.kind, error.message))
        elif isinstance(error, SESSION_FATAL):
            await self._teardown(f"channel error: {error}", notice="Connection lost")
        else:
            logger.warning("Channel error: %s", error)
            self.events.notice("Connection error", Severity.ERROR)

    async def _on_heartbeat_dead(self, reason: str) -> None:
        await self._teardown(f"heartbeat: {reason}", notice="Connection lost")

    async def _teardown(
        self,
        reason: str,
        notice: Optional[str] = None,
        severity: Severity = Severity.ERROR,
    ) -> None:
        session = self.session
        if session is None or not session.active:
            return
        # Flip state before the first await so concurrent callers return above.
        session.active = False
        self.session = None
        logger.info("Tearing down session %s: %s", session.session_id, reason)

        session.channel.clear_handlers()
        await self.heartbeat.stop()
        await self.sweeper.stop()
        self.tracker.clear()
        try:
            await session.channel.close()
        except Exception as exc:
            logger.warning("Closing channel failed: %s", exc)

        self.events.emit(
            EventType.STATUS,
            status=str(ConnectionStatus.DISCONNECTED),
            reason=reason,
            session_id=session.session_id,
        )
        if notice:
            self.events.notice(notice, severity)


__all__ = ["SessionController"]
