"""Chunk store backends for chunkdrive."""

from typing import TYPE_CHECKING

from chunkdrive.storage.chunks import ChunkSetInfo, ChunkStore, ProgressCallback

if TYPE_CHECKING:
    from chunkdrive.config import StorageConfig

__all__ = [
    "ChunkSetInfo",
    "ChunkStore",
    "create_chunk_store",
    "ProgressCallback",
]


def create_chunk_store(config: "StorageConfig") -> ChunkStore:
    """Create the chunk store described by the storage configuration.

    Args:
        config: The storage configuration.

    Returns:
        An uninitialized chunk store; call ``init()`` before use.
    """
    from chunkdrive.storage.sqlite import SQLiteChunkStore

    return SQLiteChunkStore(config.sqlite_path, chunk_size=config.chunk_size_bytes)
