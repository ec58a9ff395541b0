"""chunkdrive - user file storage on a chunked object store."""

__version__ = "0.1.0"
