from __future__ import annotations

import logging
import mimetypes
import time
from dataclasses import dataclass, field
from enum import StrEnum
from itertools import islice
from pathlib import Path
from typing import Dict, List, Optional, Union

from peer.core.events import EventBus, EventType, Severity
from shared.protocol.chunking import assemble, chunk_count
from shared.protocol.constants import DEFAULT_CHUNK_SIZE, DEFAULT_HISTORY_LIMIT, DEFAULT_TRANSFER_TIMEOUT
from shared.protocol.errors import IncompleteAssemblyError, TransferTimeout
from shared.protocol.messages import FileChunkMsg, FileMetaMsg
from shared.utils.common import generate_file_id

logger = logging.getLogger(__name__)


class TransferState(StrEnum):
    SENDING = "sending"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Direction(StrEnum):
    SEND = "send"
    RECEIVE = "receive"


@dataclass
class Artifact:
    name: str
    data: bytes
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "Artifact":
        path = Path(path)
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or ""
        return cls(name=path.name, data=path.read_bytes(), content_type=content_type)

    def save(self, directory: Union[str, Path]) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        # Only the final path component of a peer-supplied name is trusted.
        target = directory / (Path(self.name).name or "download")
        target.write_bytes(self.data)
        return target


@dataclass
class OutboundTransfer:
    file_id: str
    name: str
    size: int
    content_type: str
    total_chunks: int
    chunks_sent: int = 0
    state: TransferState = TransferState.SENDING
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    reported_progress: float = 0.0

    direction = Direction.SEND

    @property
    def progress(self) -> float:
        if self.total_chunks == 0:
            return 100.0 if self.state == TransferState.COMPLETED else 0.0
        return self.chunks_sent / self.total_chunks * 100


@dataclass
class InboundTransfer:
    file_id: str
    name: str
    size: int
    content_type: str
    total_chunks: int
    chunk_size: int = DEFAULT_CHUNK_SIZE
    # Only received blocks take memory; the declared chunk count is never preallocated.
    slots: Dict[int, bytes] = field(default_factory=dict)
    received_bytes: int = 0
    last_activity: float = field(default_factory=time.time)
    state: TransferState = TransferState.RECEIVING
    artifact: Optional[Artifact] = None
    downloaded: bool = False
    reported_progress: float = 0.0

    direction = Direction.RECEIVE

    @property
    def progress(self) -> float:
        if self.size == 0:
            return 100.0 if self.state == TransferState.COMPLETED else 0.0
        return min(self.received_bytes / self.size * 100, 100.0)

    @property
    def missing_count(self) -> int:
        return self.total_chunks - len(self.slots)

    def missing(self, limit: Optional[int] = None) -> List[int]:
        gaps = (index for index in range(self.total_chunks) if index not in self.slots)
        return list(islice(gaps, limit))

    def expected_length(self, index: int) -> int:
        if index == self.total_chunks - 1:
            return self.size - self.chunk_size * index
        return self.chunk_size

    def store(self, index: int, data: bytes) -> bool:
        """
        Fill one slot; a repeated index replaces the earlier block. Indices
        outside the declared range and blocks whose length does not match
        their position are refused.
        """
        if not 0 <= index < self.total_chunks:
            return False
        if len(data) != self.expected_length(index):
            return False
        previous = self.slots.get(index)
        if previous is not None:
            self.received_bytes -= len(previous)
        self.slots[index] = data
        self.received_bytes += len(data)
        self.last_activity = time.time()
        return True

    def assemble_bytes(self) -> bytes:
        if self.missing_count:
            raise IncompleteAssemblyError(self.missing(limit=10), count=self.missing_count)
        return assemble([self.slots[index] for index in range(self.total_chunks)])


Transfer = Union[OutboundTransfer, InboundTransfer]


class TransferTracker:
    """Per-artifact state for both directions plus a read-only history of finished ones."""

    def __init__(
        self,
        events: EventBus,
        transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.events = events
        self.transfer_timeout = transfer_timeout
        self.chunk_size = chunk_size
        self.history_limit = history_limit
        self.outbound: Dict[str, OutboundTransfer] = {}
        self.inbound: Dict[str, InboundTransfer] = {}
        self.history: Dict[str, Transfer] = {}

    # outbound

    def begin_outbound(
        self,
        artifact: Artifact,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        file_id: Optional[str] = None,
    ) -> OutboundTransfer:
        transfer = OutboundTransfer(
            file_id=file_id or generate_file_id(),
            name=artifact.name,
            size=artifact.size,
            content_type=artifact.content_type,
            total_chunks=chunk_count(artifact.size, chunk_size),
        )
        self.outbound[transfer.file_id] = transfer
        logger.info("Sending %s (%s bytes, %s chunks) as %s", transfer.name, transfer.size, transfer.total_chunks, transfer.file_id)
        return transfer

    def record_chunk_sent(self, transfer: OutboundTransfer) -> None:
        transfer.chunks_sent += 1
        self._emit_progress(transfer)

    def complete_outbound(self, transfer: OutboundTransfer) -> None:
        transfer.state = TransferState.COMPLETED
        self._emit_progress(transfer)
        self._finish(transfer)
        self.events.emit(
            EventType.TRANSFER_COMPLETE,
            file_id=transfer.file_id,
            direction=str(transfer.direction),
            name=transfer.name,
            size=transfer.size,
        )
        self.events.notice(f'File "{transfer.name}" sent')

    def fail_outbound(self, transfer: OutboundTransfer, error: Exception) -> None:
        transfer.state = TransferState.FAILED
        transfer.error = str(error)
        self._finish(transfer)
        logger.error("Sending %s failed after %s/%s chunks: %s", transfer.file_id, transfer.chunks_sent, transfer.total_chunks, error)
        self.events.emit(
            EventType.TRANSFER_FAILED,
            file_id=transfer.file_id,
            direction=str(transfer.direction),
            name=transfer.name,
            error=transfer.error,
        )
        self.events.notice(f'Sending "{transfer.name}" failed', Severity.ERROR)

    # inbound

    def begin_inbound(self, meta: FileMetaMsg) -> Optional[InboundTransfer]:
        """
        Start tracking an announced artifact. Repeated metadata for an active
        id keeps the running transfer; a chunk count that does not match the
        declared size at the shared chunk size is dropped.
        """
        current = self.inbound.get(meta.file_id)
        if current is not None:
            logger.warning("Repeated metadata for active transfer %s ignored", meta.file_id)
            return current
        expected = chunk_count(meta.size, self.chunk_size)
        if meta.total_chunks != expected:
            logger.warning(
                "Dropping metadata for %s: %s chunks declared, %s bytes at %s per chunk need %s",
                meta.file_id,
                meta.total_chunks,
                meta.size,
                self.chunk_size,
                expected,
            )
            return None
        transfer = InboundTransfer(
            file_id=meta.file_id,
            name=meta.name,
            size=meta.size,
            content_type=meta.file_type,
            total_chunks=meta.total_chunks,
            chunk_size=self.chunk_size,
        )
        self.inbound[transfer.file_id] = transfer
        logger.info("Receiving %s (%s bytes, %s chunks) as %s", transfer.name, transfer.size, transfer.total_chunks, transfer.file_id)
        return transfer

    def store_chunk(self, chunk: FileChunkMsg) -> Optional[InboundTransfer]:
        transfer = self.inbound.get(chunk.file_id)
        if transfer is None:
            logger.debug("Chunk %s for unknown transfer %s ignored", chunk.chunk_index, chunk.file_id)
            return None
        if not transfer.store(chunk.chunk_index, chunk.data):
            logger.warning(
                "Chunk %s of %s rejected: %s bytes, %s chunks declared",
                chunk.chunk_index,
                chunk.file_id,
                len(chunk.data),
                transfer.total_chunks,
            )
            return transfer
        self._emit_progress(transfer)
        return transfer

    def complete_inbound(self, file_id: str) -> Optional[Artifact]:
        """Finalize on the sender's completion signal; unknown ids are a no-op."""
        transfer = self.inbound.get(file_id)
        if transfer is None:
            logger.debug("Completion for unknown transfer %s ignored", file_id)
            return None
        try:
            data = transfer.assemble_bytes()
        except IncompleteAssemblyError as exc:
            transfer.state = TransferState.FAILED
            self._finish(transfer)
            logger.error("Cannot assemble %s: %s", file_id, exc)
            self.events.emit(
                EventType.TRANSFER_FAILED,
                file_id=file_id,
                direction=str(transfer.direction),
                name=transfer.name,
                error=exc.message,
                **exc.to_payload(),
            )
            self.events.notice(f'File "{transfer.name}" arrived incomplete', Severity.ERROR)
            return None

        transfer.artifact = Artifact(name=transfer.name, data=data, content_type=transfer.content_type)
        transfer.state = TransferState.COMPLETED
        transfer.slots = {}
        self._emit_progress(transfer)
        self._finish(transfer)
        self.events.emit(
            EventType.TRANSFER_COMPLETE,
            file_id=file_id,
            direction=str(transfer.direction),
            name=transfer.name,
            size=transfer.artifact.size,
            content_type=transfer.content_type,
            artifact=transfer.artifact,
        )
        self.events.notice(f'File "{transfer.name}" received')
        return transfer.artifact

    def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        now = time.time() if now is None else now
        expired: List[str] = []
        for file_id, transfer in list(self.inbound.items()):
            idle_for = now - transfer.last_activity
            if idle_for <= self.transfer_timeout:
                continue
            error = TransferTimeout(file_id, idle_for)
            transfer.state = TransferState.TIMED_OUT
            self._finish(transfer)
            expired.append(file_id)
            logger.warning("Transfer timed out: %s", error)
            self.events.emit(
                EventType.TRANSFER_TIMEOUT,
                file_id=file_id,
                name=transfer.name,
                received_bytes=transfer.received_bytes,
                size=transfer.size,
                **error.to_payload(),
            )
            self.events.notice(f'File "{transfer.name}" transfer timed out', Severity.ERROR)
        return expired

    def mark_downloaded(self, file_id: str) -> bool:
        """Flag a received artifact as saved and drop the tracker's copy of its bytes."""
        transfer = self.history.get(file_id)
        if not isinstance(transfer, InboundTransfer) or transfer.state != TransferState.COMPLETED:
            return False
        transfer.downloaded = True
        transfer.artifact = None
        return True

    def get(self, file_id: str) -> Optional[Transfer]:
        return self.outbound.get(file_id) or self.inbound.get(file_id) or self.history.get(file_id)

    def clear(self) -> None:
        """Forget every in-flight transfer silently; history is kept."""
        if self.outbound or self.inbound:
            logger.info("Discarding %s outbound and %s inbound transfers", len(self.outbound), len(self.inbound))
        self.outbound.clear()
        self.inbound.clear()

    def _emit_progress(self, transfer: Transfer) -> None:
        progress = max(transfer.progress, transfer.reported_progress)
        transfer.reported_progress = progress
        self.events.emit(
            EventType.PROGRESS,
            file_id=transfer.file_id,
            direction=str(transfer.direction),
            progress=progress,
        )

    def _finish(self, transfer: Transfer) -> None:
        if isinstance(transfer, OutboundTransfer):
            self.outbound.pop(transfer.file_id, None)
        else:
            self.inbound.pop(transfer.file_id, None)
            if transfer.state != TransferState.COMPLETED:
                transfer.slots = {}
        self.history.pop(transfer.file_id, None)
        self.history[transfer.file_id] = transfer
        while len(self.history) > self.history_limit:
            oldest = next(iter(self.history))
            logger.debug("Evicting %s from transfer history", oldest)
            del self.history[oldest]


__all__ = [
    "Artifact",
    "Direction",
    "InboundTransfer",
    "OutboundTransfer",
    "Transfer",
    "TransferState",
    "TransferTracker",
]
