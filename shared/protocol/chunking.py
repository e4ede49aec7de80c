"""
Chunk codec: cut an artifact into index-addressed, fixed-size blocks and
put received blocks back together.
"""

from __future__ import annotations

from typing import Iterator, Optional, Sequence, Tuple, Union

from .constants import DEFAULT_CHUNK_SIZE
from .errors import IncompleteAssemblyError

BytesLike = Union[bytes, bytearray, memoryview]


def chunk_count(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """ceil(size / chunk_size); an empty artifact has no chunks."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    if size < 0:
        raise ValueError("size must not be negative")
    return -(-size // chunk_size)


class ChunkSequence:
    """
    Lazy view of an artifact as ``(index, bytes)`` pairs.

    Iterating twice starts over from chunk 0; nothing is copied until a chunk
    is produced.
    """

    def __init__(self, data: BytesLike, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._view = memoryview(data).cast("B")
        self.chunk_size = chunk_size
        self.size = len(self._view)
        self.total = chunk_count(self.size, chunk_size)

    def __len__(self) -> int:
        return self.total

    def __iter__(self) -> Iterator[Tuple[int, bytes]]:
        for index in range(self.total):
            yield index, self.chunk(index)

    def chunk(self, index: int) -> bytes:
        if not 0 <= index < self.total:
            raise IndexError(f"chunk index {index} out of range 0..{self.total - 1}")
        start = index * self.chunk_size
        return bytes(self._view[start : start + self.chunk_size])


def split(data: BytesLike, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ChunkSequence:
    return ChunkSequence(data, chunk_size)


def assemble(slots: Sequence[Optional[BytesLike]]) -> bytes:
    """Concatenate slots in index order; every slot must be filled."""
    missing = [index for index, block in enumerate(slots) if block is None]
    if missing:
        raise IncompleteAssemblyError(missing)
    return b"".join(bytes(block) for block in slots)


__all__ = ["ChunkSequence", "chunk_count", "split", "assemble"]
