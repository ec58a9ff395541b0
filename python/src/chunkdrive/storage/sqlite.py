"""SQLite chunk store for chunkdrive.

Implements the ChunkStore protocol with two tables laid out like a GridFS
bucket:

Tables:
    chunk_sets(id, filename, content_type, length, chunk_size, upload_date)
        one header row per stored payload
    chunks(chunk_set_id, n, data)
        chunk ``n`` holds bytes ``[n * chunk_size, (n + 1) * chunk_size)``

Chunks are written first, in order, and the header row last. A chunk set
without a header is an orphan left by an interrupted upload: it is invisible
to readers. ``sweep_orphans()`` removes those on startup, together with
complete chunk sets that no catalog record references.
"""

import logging
import uuid
from collections.abc import AsyncIterable, AsyncIterator, Collection
from contextlib import aclosing

import aiosqlite

from chunkdrive.errors import ChunkSetNotFound, ChunkStoreError
from chunkdrive.storage.chunks import (
    ChunkSetInfo,
    ProgressCallback,
    ProgressTracker,
    rechunk,
)
from chunkdrive.timestamps import now_iso

logger = logging.getLogger(__name__)

# GridFS default: 255 KiB keeps a chunk plus its row overhead under 256 KiB.
DEFAULT_CHUNK_SIZE = 255 * 1024

_CREATE_CHUNK_SETS = """
CREATE TABLE IF NOT EXISTS chunk_sets (
    id            TEXT PRIMARY KEY,
    filename      TEXT NOT NULL,
    content_type  TEXT,
    length        INTEGER NOT NULL,
    chunk_size    INTEGER NOT NULL,
    upload_date   TEXT NOT NULL
)
"""

_CREATE_CHUNKS = """
CREATE TABLE IF NOT EXISTS chunks (
    chunk_set_id  TEXT NOT NULL,
    n             INTEGER NOT NULL,
    data          BLOB NOT NULL,
    PRIMARY KEY (chunk_set_id, n)
)
"""


class SQLiteChunkStore:
    """Chunk store that persists chunk sets inside a SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        chunk_size: Size in bytes of every chunk except the last.
    """

    def __init__(self, db_path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """Initialize the SQLite chunk store.

        Args:
            db_path: Path to the SQLite database file, or ':memory:'.
            chunk_size: Chunk size for new chunk sets. Existing chunk sets
                keep the size recorded in their header.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.db_path = db_path
        self.chunk_size = chunk_size
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the SQLite connection and create tables if they do not exist.

        Configures WAL mode and a 5-second busy timeout for concurrent access.
        """
        if self._db is not None:
            return
        db = await aiosqlite.connect(self.db_path)
        self._db = db
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=5000")
        await db.execute(_CREATE_CHUNK_SETS)
        await db.execute(_CREATE_CHUNKS)
        await db.commit()
        logger.info("SQLite chunk store initialized at %s", self.db_path)

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _ensure_db(self) -> aiosqlite.Connection:
        """Return the active database connection or raise."""
        if self._db is None:
            raise RuntimeError("SQLiteChunkStore not initialized, call init() first")
        return self._db

    async def ping(self) -> None:
        db = self._ensure_db()
        async with db.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    # -- Writes ----------------------------------------------------------------

    async def create(
        self,
        stream: AsyncIterable[bytes],
        filename: str,
        content_type: str | None = None,
        total_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Consume ``stream`` and store it as a new chunk set.

        Chunks are committed as they fill, so memory use is bounded by one
        chunk regardless of payload size. The header row is written after the
        last chunk.

        If the stream raises (including cancellation) or a write fails, the
        chunks written so far are removed best-effort and the error
        propagates. Database errors are wrapped in ``ChunkStoreError``.

        Args:
            stream: Async iterable of byte blocks of any size.
            filename: Filename recorded in the header.
            content_type: MIME type recorded in the header.
            total_size: Expected total length; enables progress callbacks.
            on_progress: Called with (written, total) per whole percent.

        Returns:
            The new chunk set id.
        """
        db = self._ensure_db()
        chunk_set_id = uuid.uuid4().hex
        progress = ProgressTracker(total_size, on_progress)
        n = 0

        try:
            async for block in rechunk(stream, self.chunk_size):
                try:
                    await db.execute(
                        "INSERT INTO chunks (chunk_set_id, n, data) VALUES (?, ?, ?)",
                        (chunk_set_id, n, block),
                    )
                    await db.commit()
                except aiosqlite.Error as exc:
                    raise ChunkStoreError(f"Failed to write chunk {n} of {chunk_set_id}") from exc
                n += 1
                progress.advance(len(block))

            try:
                await db.execute(
                    """INSERT INTO chunk_sets
                       (id, filename, content_type, length, chunk_size, upload_date)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        chunk_set_id,
                        filename,
                        content_type,
                        progress.written,
                        self.chunk_size,
                        now_iso(),
                    ),
                )
                await db.commit()
            except aiosqlite.Error as exc:
                raise ChunkStoreError(f"Failed to write header of {chunk_set_id}") from exc
        except BaseException:
            await self._discard(chunk_set_id)
            raise

        logger.debug(
            "Stored chunk set %s (%d bytes in %d chunks)", chunk_set_id, progress.written, n
        )
        return chunk_set_id

    async def create_buffered(
        self, data: bytes, filename: str, content_type: str | None = None
    ) -> str:
        """Store an in-memory buffer as a new chunk set.

        Args:
            data: The complete payload.
            filename: Filename recorded in the header.
            content_type: MIME type recorded in the header.

        Returns:
            The new chunk set id.
        """

        async def _single():
            yield data

        return await self.create(_single(), filename, content_type, total_size=len(data))

    async def _discard(self, chunk_set_id: str) -> None:
        """Best-effort removal of a partially written chunk set."""
        try:
            await self.delete(chunk_set_id)
        except Exception:
            logger.warning(
                "Failed to discard partial chunk set %s; it will be swept on restart",
                chunk_set_id,
                exc_info=True,
            )

    async def delete(self, chunk_set_id: str) -> None:
        """Delete a chunk set and all its chunks.

        Silently succeeds if the chunk set does not exist (idempotent).

        Args:
            chunk_set_id: The chunk set identifier.
        """
        db = self._ensure_db()
        try:
            await db.execute("DELETE FROM chunk_sets WHERE id = ?", (chunk_set_id,))
            await db.execute("DELETE FROM chunks WHERE chunk_set_id = ?", (chunk_set_id,))
            await db.commit()
        except aiosqlite.Error as exc:
            raise ChunkStoreError(f"Failed to delete chunk set {chunk_set_id}") from exc

    async def sweep_orphans(self, referenced: Collection[str] | None = None) -> int:
        """Delete chunk sets that no reader can reach.

        Always removes chunks whose chunk set has no header. When
        ``referenced`` is given, complete chunk sets whose id is not in it
        are removed too; this reclaims payloads whose catalog record was
        never written or was deleted without its chunks.

        Only safe while no upload is in flight; called from startup.

        Args:
            referenced: Chunk set ids that catalog records point at.

        Returns:
            The number of chunk sets removed.
        """
        db = self._ensure_db()
        async with db.execute(
            """SELECT DISTINCT chunk_set_id FROM chunks
               WHERE chunk_set_id NOT IN (SELECT id FROM chunk_sets)"""
        ) as cursor:
            orphans = {row[0] for row in await cursor.fetchall()}

        if referenced is not None:
            keep = set(referenced)
            async with db.execute("SELECT id FROM chunk_sets") as cursor:
                orphans.update(row[0] for row in await cursor.fetchall() if row[0] not in keep)

        for chunk_set_id in orphans:
            await db.execute("DELETE FROM chunk_sets WHERE id = ?", (chunk_set_id,))
            await db.execute("DELETE FROM chunks WHERE chunk_set_id = ?", (chunk_set_id,))
        await db.commit()
        if orphans:
            logger.info("Swept %d orphaned chunk sets", len(orphans))
        return len(orphans)

    # -- Reads -----------------------------------------------------------------

    async def stat(self, chunk_set_id: str) -> ChunkSetInfo | None:
        """Return the header of a chunk set, or None if it does not exist."""
        db = self._ensure_db()
        try:
            async with db.execute(
                """SELECT id, filename, content_type, length, chunk_size, upload_date
                   FROM chunk_sets WHERE id = ?""",
                (chunk_set_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise ChunkStoreError(f"Failed to read header of {chunk_set_id}") from exc

        if row is None:
            return None
        return ChunkSetInfo(
            id=row[0],
            filename=row[1],
            content_type=row[2],
            length=row[3],
            chunk_size=row[4],
            upload_date=row[5],
        )

    async def open_read(
        self, chunk_set_id: str, start: int = 0, end: int | None = None
    ) -> AsyncIterator[bytes]:
        """Open a lazy read of bytes ``[start, end)`` of a chunk set.

        The header is resolved eagerly so a missing chunk set fails here,
        before any byte is produced. The returned async generator then fetches
        one chunk per iteration step; nothing is read ahead of demand.
        Closing the generator early stops the read.

        Args:
            chunk_set_id: The chunk set identifier.
            start: First byte offset (inclusive).
            end: Last byte offset (exclusive); defaults to the payload length.

        Returns:
            An async iterator of byte blocks covering exactly the range.

        Raises:
            ChunkSetNotFound: If the chunk set does not exist.
            ValueError: If the range is outside ``[0, length]`` or inverted.
        """
        info = await self.stat(chunk_set_id)
        if info is None:
            raise ChunkSetNotFound(chunk_set_id)
        if end is None:
            end = info.length
        if start < 0 or end > info.length or start > end:
            raise ValueError(
                f"Range [{start}, {end}) outside chunk set of length {info.length}"
            )
        return self._iter_range(info, start, end)

    async def _iter_range(
        self, info: ChunkSetInfo, start: int, end: int
    ) -> AsyncIterator[bytes]:
        """Yield the slices of consecutive chunks that cover ``[start, end)``."""
        size = info.chunk_size
        n = start // size
        pos = start
        while pos < end:
            data = await self._read_chunk(info.id, n)
            chunk_start = n * size
            expected = min(size, info.length - chunk_start)
            if data is None:
                raise ChunkStoreError(f"Chunk {n} of {info.id} is missing")
            if len(data) != expected:
                raise ChunkStoreError(
                    f"Chunk {n} of {info.id} has {len(data)} bytes, expected {expected}"
                )
            lo = pos - chunk_start
            hi = min(expected, end - chunk_start)
            yield bytes(data[lo:hi])
            pos = chunk_start + hi
            n += 1

    async def _read_chunk(self, chunk_set_id: str, n: int) -> bytes | None:
        db = self._ensure_db()
        try:
            async with db.execute(
                "SELECT data FROM chunks WHERE chunk_set_id = ? AND n = ?",
                (chunk_set_id, n),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise ChunkStoreError(f"Failed to read chunk {n} of {chunk_set_id}") from exc
        return None if row is None else row[0]

    async def head_bytes(self, chunk_set_id: str, max_bytes: int) -> bytes:
        """Return at most ``max_bytes`` from the start of a chunk set.

        Reads only the chunks that overlap the prefix.

        Raises:
            ChunkSetNotFound: If the chunk set does not exist.
        """
        info = await self.stat(chunk_set_id)
        if info is None:
            raise ChunkSetNotFound(chunk_set_id)
        limit = min(max(max_bytes, 0), info.length)
        if limit == 0:
            return b""
        reader = await self.open_read(chunk_set_id, 0, limit)
        async with aclosing(reader):
            return b"".join([block async for block in reader])
