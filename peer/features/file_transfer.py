from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from peer.config import PEER_CONFIG
from peer.core.session import Session
from shared.protocol.chunking import split
from shared.protocol.errors import ChannelClosed, ChannelSendFailure, NotConnectedError
from shared.protocol.messages import FileChunkMsg, FileCompleteMsg, FileMetaMsg

from .transfers import Artifact, InboundTransfer, OutboundTransfer, TransferState, TransferTracker

logger = logging.getLogger(__name__)


class FileTransferManager:
    """Chunked file sending plus the inbound file-meta / file-chunk / file-complete handlers."""

    def __init__(self, tracker: TransferTracker, config: Optional[Dict[str, Any]] = None) -> None:
        self.tracker = tracker
        self.config = config or PEER_CONFIG
        self.chunk_size = int(self.config["chunk_size"])
        self.yield_every = int(self.config["send_yield_every"])
        self.yield_delay = float(self.config["send_yield_delay"])
        # One outbound artifact at a time; chunks of two files never interleave on the channel.
        self._send_lock = asyncio.Lock()

    async def send_file(self, session: Session, artifact: Artifact) -> OutboundTransfer:
        """
        Send metadata, every chunk in index order, then the completion signal.

        A failed hand-off aborts the transfer (state ``failed`` plus one failure
        event); nothing is retried. ``ChannelClosed`` is re-raised after that
        so the caller can end the session. If the session ends mid-send the
        transfer is abandoned without any event.
        """
        async with self._send_lock:
            if not session.is_open:
                raise NotConnectedError()
            transfer = self.tracker.begin_outbound(artifact, self.chunk_size)
            channel = session.channel
            try:
                meta = FileMetaMsg(
                    file_id=transfer.file_id,
                    name=transfer.name,
                    size=transfer.size,
                    file_type=transfer.content_type,
                    total_chunks=transfer.total_chunks,
                )
                await channel.send(meta.to_wire())
                for index, block in split(artifact.data, self.chunk_size):
                    if not session.active:
                        break
                    await channel.send(FileChunkMsg(file_id=transfer.file_id, chunk_index=index, data=block).to_wire())
                    self.tracker.record_chunk_sent(transfer)
                    if (index + 1) % self.yield_every == 0:
                        await asyncio.sleep(self.yield_delay)
                if session.active:
                    await channel.send(FileCompleteMsg(file_id=transfer.file_id).to_wire())
            except (ChannelSendFailure, ChannelClosed) as exc:
                if session.active:
                    self.tracker.fail_outbound(transfer, exc)
                    if isinstance(exc, ChannelClosed):
                        raise
                    return transfer

            if not session.active:
                logger.info(
                    "Abandoned %s after %s/%s chunks, session ended",
                    transfer.file_id,
                    transfer.chunks_sent,
                    transfer.total_chunks,
                )
                return transfer
            self.tracker.complete_outbound(transfer)
            return transfer

    def handle_meta(self, message: FileMetaMsg) -> Optional[InboundTransfer]:
        return self.tracker.begin_inbound(message)

    def handle_chunk(self, message: FileChunkMsg) -> Optional[InboundTransfer]:
        return self.tracker.store_chunk(message)

    def handle_complete(self, message: FileCompleteMsg) -> Optional[Artifact]:
        return self.tracker.complete_inbound(message.file_id)

    def save_received(self, file_id: str, directory: Union[str, Path]) -> Path:
        """Write a received artifact to disk and mark it downloaded; its bytes are released afterwards."""
        transfer = self.tracker.history.get(file_id)
        if not isinstance(transfer, InboundTransfer) or transfer.state != TransferState.COMPLETED:
            raise KeyError(f"No received file {file_id}")
        if transfer.artifact is None:
            raise KeyError(f"Received file {file_id} was already saved")
        path = transfer.artifact.save(directory)
        self.tracker.mark_downloaded(file_id)
        logger.info("Saved %s to %s", file_id, path)
        return path


__all__ = ["FileTransferManager"]
