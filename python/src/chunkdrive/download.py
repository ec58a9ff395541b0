"""Download pipeline: authorize, resolve and stream a stored object.

``DownloadPipeline.open`` does every check that can fail up front (record
lookup, access gate, chunk set header, range) so a request either gets an
error status or a response whose body is a lazy, demand-driven chunk read.
"""

import logging
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field

from chunkdrive import metrics
from chunkdrive.access import Identity, can_read
from chunkdrive.catalog.store import CatalogStore
from chunkdrive.errors import ChunkStoreError, Forbidden, InvalidRange, NotFound
from chunkdrive.storage.chunks import ChunkStore
from chunkdrive.timestamps import iso_to_http_date
from chunkdrive.upload import DEFAULT_CONTENT_TYPE
from chunkdrive.validation import validate_id

logger = logging.getLogger(__name__)

# Bytes at a given object id never change, so responses may be cached for a year.
_CACHE_MAX_AGE = 31536000

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range_header(header: str | None, total: int) -> tuple[int, int] | None:
    """Parse an HTTP Range header into (start, end) byte offsets.

    Supports three forms:
        - bytes=start-end  (both specified)
        - bytes=start-     (from start to end of file)
        - bytes=-suffix    (last N bytes)

    Args:
        header: The Range header value, e.g. "bytes=0-4".
        total: The total size of the resource in bytes.

    Returns:
        A (start, end) tuple of inclusive byte offsets, or None if the
        header is absent, unparseable, or asks for several ranges.

    Raises:
        InvalidRange: If the parsed range is not satisfiable.
    """
    if not header or not header.startswith("bytes="):
        return None

    range_spec = header[len("bytes="):]

    # Only a single range is served; anything else gets the full body.
    if "," in range_spec:
        return None

    m = _RANGE_RE.match(f"bytes={range_spec.strip()}")
    if not m:
        return None

    start_str, end_str = m.group(1), m.group(2)

    if not start_str and not end_str:
        raise InvalidRange()

    if not start_str:
        # bytes=-N -> last N bytes
        suffix_length = int(end_str)
        if suffix_length == 0 or total == 0:
            raise InvalidRange()
        start = max(total - suffix_length, 0)
        end = total - 1
    elif not end_str:
        # bytes=N- -> from N to end
        start = int(start_str)
        if start >= total:
            raise InvalidRange()
        end = total - 1
    else:
        start = int(start_str)
        end = int(end_str)
        if start > end or start >= total:
            raise InvalidRange()
        end = min(end, total - 1)

    return (start, end)


@dataclass
class Download:
    """A resolved download, ready to hand to a streaming response.

    Attributes:
        status: 200 for the full payload, 206 for a byte range.
        media_type: Content type of the payload.
        headers: Framing and caching headers.
        body: Lazy byte stream; closing it ends the underlying chunk read.
    """

    status: int
    media_type: str
    body: AsyncIterator[bytes]
    headers: dict[str, str] = field(default_factory=dict)


class DownloadPipeline:
    """Resolves object ids to streamed payloads."""

    def __init__(self, catalog: CatalogStore, chunks: ChunkStore) -> None:
        self.catalog = catalog
        self.chunks = chunks

    async def open(
        self,
        object_id: str,
        identity: Identity | None,
        range_header: str | None = None,
    ) -> Download:
        """Authorize a read and open the object's chunk stream.

        Args:
            object_id: Id of the stored object.
            identity: The caller, or None when anonymous.
            range_header: Raw ``Range`` request header, if any.

        Raises:
            BadInput: If the id is malformed.
            NotFound: If the object is unknown or its chunk set is unusable.
            Forbidden: If the access gate denies the caller.
            InvalidRange: If the requested range is not satisfiable.
        """
        validate_id(object_id)
        obj = await self.catalog.get_object(object_id)
        if obj is None:
            metrics.record_download("not_found")
            raise NotFound()
        if not can_read(obj, identity):
            metrics.record_download("forbidden")
            raise Forbidden()

        try:
            info = await self.chunks.stat(obj.chunk_set_id)
        except ChunkStoreError as exc:
            logger.error("Chunk set lookup failed: %s", exc, extra={"object_id": object_id})
            metrics.record_download("error")
            raise NotFound() from exc
        if info is None:
            logger.warning(
                "Catalog record references missing chunk set %s",
                obj.chunk_set_id,
                extra={"object_id": object_id},
            )
            metrics.record_download("error")
            raise NotFound()

        total = info.length
        headers = {
            "Accept-Ranges": "bytes",
            "Last-Modified": iso_to_http_date(info.upload_date),
            "Cache-Control": (
                f"{'public' if obj.is_public else 'private'}, "
                f"max-age={_CACHE_MAX_AGE}, immutable"
            ),
        }
        media_type = info.content_type or obj.content_type or DEFAULT_CONTENT_TYPE

        parsed = parse_range_header(range_header, total)
        if parsed is not None:
            start, end = parsed
            status = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{total}"
            length = end - start + 1
        else:
            start, end = 0, total - 1
            status = 200
            length = total
        headers["Content-Length"] = str(length)

        try:
            reader = await self.chunks.open_read(obj.chunk_set_id, start, start + length)
        except (ChunkStoreError, ValueError) as exc:
            logger.error("Could not open chunk set: %s", exc, extra={"object_id": object_id})
            metrics.record_download("error")
            raise NotFound() from exc

        metrics.record_download("partial" if status == 206 else "ok")
        return Download(
            status=status,
            media_type=media_type,
            body=self._stream(reader, object_id),
            headers=headers,
        )

    @staticmethod
    async def _stream(reader: AsyncIterator[bytes], object_id: str) -> AsyncIterator[bytes]:
        """Relay chunk blocks, closing the reader however the response ends."""
        sent = 0
        try:
            async with aclosing(reader):
                async for block in reader:
                    sent += len(block)
                    yield block
        except ChunkStoreError as exc:
            logger.error(
                "Download aborted after %d bytes: %s",
                sent,
                exc,
                extra={"object_id": object_id},
            )
            raise
        finally:
            metrics.record_bytes_sent(sent)
