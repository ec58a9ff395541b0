"""Chunk store protocol and helpers shared by implementations.

A chunk set is an ordered sequence of fixed-size binary chunks (the last one
may be shorter) plus a header describing the whole payload. Concatenating the
chunks in order reproduces the original byte stream exactly.
"""

from collections.abc import AsyncIterable, AsyncIterator, Callable, Collection
from dataclasses import dataclass
from typing import Protocol

# Called with (bytes_written, total_bytes) each time another whole percent
# of the declared total has been written.
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class ChunkSetInfo:
    """Header record of a stored chunk set.

    Attributes:
        id: The chunk set identifier.
        filename: Filename recorded at upload time.
        content_type: MIME type recorded at upload time, if any.
        length: Total payload length in bytes.
        chunk_size: Size of every chunk except possibly the last.
        upload_date: ISO 8601 timestamp at which the header was written.
    """

    id: str
    filename: str
    content_type: str | None
    length: int
    chunk_size: int
    upload_date: str

    @property
    def chunk_count(self) -> int:
        return -(-self.length // self.chunk_size) if self.length else 0


class ChunkStore(Protocol):
    """Protocol defining the chunked large-object store.

    Methods store and stream payloads as chunk sets. Implementations must
    write chunks strictly in byte order and make a chunk set visible to
    readers only once all of its chunks are stored.
    """

    async def init(self) -> None:
        """Open connections and create the schema (idempotent)."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...

    async def ping(self) -> None:
        """Raise if the store is not usable."""
        ...

    async def create(
        self,
        stream: AsyncIterable[bytes],
        filename: str,
        content_type: str | None = None,
        total_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Consume ``stream`` fully and store it as a new chunk set.

        Args:
            stream: Async iterable of byte blocks of any size.
            filename: Filename recorded in the header.
            content_type: MIME type recorded in the header.
            total_size: Expected total length; enables progress callbacks.
            on_progress: Progress callback, see ``ProgressCallback``.

        Returns:
            The new chunk set id.
        """
        ...

    async def create_buffered(
        self, data: bytes, filename: str, content_type: str | None = None
    ) -> str:
        """Store an in-memory buffer as a new chunk set."""
        ...

    async def stat(self, chunk_set_id: str) -> ChunkSetInfo | None:
        """Return the header of a chunk set, or None if it does not exist."""
        ...

    async def open_read(
        self, chunk_set_id: str, start: int = 0, end: int | None = None
    ) -> AsyncIterator[bytes]:
        """Open a lazy read of bytes ``[start, end)`` of a chunk set.

        Raises:
            ChunkSetNotFound: If the chunk set does not exist.
            ValueError: If the range falls outside the payload.
        """
        ...

    async def head_bytes(self, chunk_set_id: str, max_bytes: int) -> bytes:
        """Return at most ``max_bytes`` from the start of a chunk set."""
        ...

    async def delete(self, chunk_set_id: str) -> None:
        """Remove a chunk set. Deleting an unknown id is not an error."""
        ...

    async def sweep_orphans(self, referenced: Collection[str] | None = None) -> int:
        """Remove headerless chunk sets, and those not in ``referenced`` when given.

        Returns the number of chunk sets removed.
        """
        ...


async def rechunk(stream: AsyncIterable[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    """Re-block an async byte stream into ``chunk_size`` pieces.

    Every yielded block is exactly ``chunk_size`` bytes except the last one,
    which holds the remainder. Empty input blocks are skipped.
    """
    buf = bytearray()
    async for block in stream:
        if not block:
            continue
        buf += block
        while len(buf) >= chunk_size:
            yield bytes(buf[:chunk_size])
            del buf[:chunk_size]
    if buf:
        yield bytes(buf)


class ProgressTracker:
    """Invokes a progress callback once per whole percent of ``total``.

    Does nothing when the total is unknown or zero, or there is no callback.
    """

    def __init__(self, total: int | None, callback: ProgressCallback | None) -> None:
        self.total = total or 0
        self.callback = callback
        self.written = 0
        self._last_percent = 0

    def advance(self, n: int) -> None:
        self.written += n
        if self.callback is None or self.total <= 0:
            return
        percent = min(100, self.written * 100 // self.total)
        if percent > self._last_percent:
            self._last_percent = percent
            self.callback(self.written, self.total)
