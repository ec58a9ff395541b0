"""Upload pipeline: from an inbound payload to a catalog record.

An upload writes the payload into a new chunk set, then inserts the catalog
record that references it. The record is only created once the chunk set is
complete, so a failed or aborted upload never leaves a record pointing at
missing data.

Tag enrichment runs afterwards in a background task that the pipeline owns;
the upload response never waits for it.
"""

import asyncio
import base64
import dataclasses
import logging
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

from chunkdrive import metrics
from chunkdrive.cache import ListingCache
from chunkdrive.catalog.models import StoredObject
from chunkdrive.catalog.store import CatalogStore
from chunkdrive.config import EnrichmentConfig, StorageConfig
from chunkdrive.enrichment import TagGenerator, TagInput
from chunkdrive.errors import BadInput, ChunkStoreError, FileTooLarge, UploadFailed
from chunkdrive.filetypes import get_file_type
from chunkdrive.storage.chunks import ChunkStore, ProgressCallback
from chunkdrive.timestamps import now_iso
from chunkdrive.validation import validate_filename

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_PREVIEW_MAX_CHARS = 5000
_TEXT_EXTENSIONS = frozenset({"txt", "md", "csv", "json", "xml", "html", "htm"})


@dataclass(frozen=True)
class UploadRequest:
    """Client-declared facts about an upload.

    Attributes:
        filename: Display filename; also decides the type and extension.
        content_type: Declared MIME type, used for display and download only.
        owner_id: Id of the uploading user.
        account_id: Account id echoed back on the record.
        path: Page path whose cached listings the upload invalidates.
    """

    filename: str
    content_type: str | None
    owner_id: str
    account_id: str
    path: str = "/"


def object_url(object_id: str) -> str:
    return f"/api/files/{object_id}"


def _is_text_like(content_type: str, extension: str) -> bool:
    ct = content_type.lower()
    if ct.startswith("text/"):
        return True
    if any(marker in ct for marker in ("json", "xml", "csv")):
        return True
    return extension in _TEXT_EXTENSIONS


async def _limit_stream(stream: AsyncIterable[bytes], limit: int) -> AsyncIterator[bytes]:
    """Pass blocks through, raising FileTooLarge once more than ``limit`` bytes arrive."""
    seen = 0
    async for block in stream:
        seen += len(block)
        if seen > limit:
            raise FileTooLarge(limit)
        yield block


class UploadPipeline:
    """Stores uploads and schedules their enrichment.

    Attributes:
        catalog: The object catalog.
        chunks: The chunk store.
        tagger: Client for the tag-generation service.
        cache: Listing cache invalidated after each mutation.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        chunks: ChunkStore,
        tagger: TagGenerator,
        cache: ListingCache,
        storage_config: StorageConfig,
        enrichment_config: EnrichmentConfig,
    ) -> None:
        self.catalog = catalog
        self.chunks = chunks
        self.tagger = tagger
        self.cache = cache
        self.max_upload_bytes = storage_config.max_upload_bytes
        self.enrichment_config = enrichment_config
        self._tasks: set[asyncio.Task] = set()

    # -- Ingestion ---------------------------------------------------------------

    async def ingest_buffer(self, data: bytes, request: UploadRequest) -> StoredObject:
        """Store an in-memory payload.

        Raises:
            BadInput: If a required field is missing or the owner is unknown.
            FileTooLarge: If the payload exceeds the configured maximum.
            UploadFailed: If the chunk set or catalog record cannot be written.
        """
        name = await self._validate(request, len(data))
        content_type = request.content_type or DEFAULT_CONTENT_TYPE
        try:
            chunk_set_id = await self.chunks.create_buffered(data, name, content_type)
        except ChunkStoreError as exc:
            metrics.record_upload("error")
            logger.error("Chunk write failed for %s: %s", name, exc)
            raise UploadFailed() from exc
        return await self._finish(chunk_set_id, name, content_type, len(data), request)

    async def ingest_stream(
        self,
        stream: AsyncIterable[bytes],
        request: UploadRequest,
        declared_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> StoredObject:
        """Store a payload that arrives incrementally.

        The stream is piped into the chunk store without being buffered in
        full. A declared size above the limit is rejected before anything is
        written; the observed byte count is checked as blocks arrive.

        Args:
            stream: Async iterable of byte blocks, typically a request body.
            request: The upload's declared metadata.
            declared_size: Content length announced by the client, if any.
            on_progress: Called on each whole-percent boundary of
                ``declared_size``; never called when the size is unknown.

        Raises:
            BadInput: If a required field is missing or the owner is unknown.
            FileTooLarge: If the declared or observed size exceeds the limit.
            UploadFailed: If the chunk set or catalog record cannot be written.
        """
        name = await self._validate(request, declared_size)
        content_type = request.content_type or DEFAULT_CONTENT_TYPE
        try:
            chunk_set_id = await self.chunks.create(
                _limit_stream(stream, self.max_upload_bytes),
                name,
                content_type,
                total_size=declared_size,
                on_progress=on_progress,
            )
        except FileTooLarge:
            metrics.record_upload("too_large")
            raise
        except ChunkStoreError as exc:
            metrics.record_upload("error")
            logger.error("Chunk write failed for %s: %s", name, exc)
            raise UploadFailed() from exc

        info = await self.chunks.stat(chunk_set_id)
        size = info.length if info is not None else 0
        return await self._finish(chunk_set_id, name, content_type, size, request)

    async def _validate(self, request: UploadRequest, size: int | None) -> str:
        name = validate_filename(request.filename)
        if not request.owner_id or not request.account_id:
            raise BadInput("Missing ownerId or accountId")
        if size is not None and size > self.max_upload_bytes:
            metrics.record_upload("too_large")
            raise FileTooLarge(self.max_upload_bytes)
        if await self.catalog.get_user(request.owner_id) is None:
            raise BadInput("Unknown owner")
        return name

    async def _finish(
        self,
        chunk_set_id: str,
        name: str,
        content_type: str,
        size: int,
        request: UploadRequest,
    ) -> StoredObject:
        """Insert the catalog record for a complete chunk set."""
        file_type, extension = get_file_type(name)
        object_id = uuid.uuid4().hex
        now = now_iso()
        obj = StoredObject(
            id=object_id,
            name=name,
            url=object_url(object_id),
            content_type=content_type,
            size=size,
            chunk_set_id=chunk_set_id,
            owner_id=request.owner_id,
            account_id=request.account_id,
            type=file_type,
            extension=extension,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.catalog.insert_object(obj)
        except Exception as exc:
            logger.error("Catalog insert failed for chunk set %s: %s", chunk_set_id, exc)
            await self._discard_chunk_set(chunk_set_id)
            metrics.record_upload("error")
            raise UploadFailed() from exc

        metrics.record_upload("ok", size)
        logger.info(
            "Stored %s (%d bytes)",
            name,
            size,
            extra={"object_id": object_id, "owner_id": request.owner_id},
        )
        self.cache.invalidate(request.path)
        self._schedule_enrichment(obj, request.path)
        return obj

    async def _discard_chunk_set(self, chunk_set_id: str) -> None:
        try:
            await self.chunks.delete(chunk_set_id)
        except ChunkStoreError as exc:
            # Unreferenced by the catalog, so the startup sweep reclaims it.
            logger.warning("Could not remove chunk set %s: %s", chunk_set_id, exc)

    # -- Enrichment --------------------------------------------------------------

    def _schedule_enrichment(self, obj: StoredObject, path: str) -> None:
        if not self.tagger.enabled:
            return
        info = TagInput(
            name=obj.name,
            type=obj.type,
            extension=obj.extension,
            content_type=obj.content_type,
            size=obj.size,
        )
        task = asyncio.create_task(
            self._enrich(obj.id, obj.chunk_set_id, info, path),
            name=f"enrich-{obj.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending_enrichments(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding enrichment task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _enrich(
        self, object_id: str, chunk_set_id: str, info: TagInput, path: str
    ) -> None:
        try:
            await self._apply_tags(object_id, chunk_set_id, info, path)
        except Exception:
            logger.warning(
                "Enrichment failed", exc_info=True, extra={"object_id": object_id}
            )

    async def _apply_tags(
        self, object_id: str, chunk_set_id: str, info: TagInput, path: str
    ) -> list[str]:
        info = await self._with_content(chunk_set_id, info)
        tags = await self.tagger.generate(info)
        if not tags:
            return []
        if not await self.catalog.set_tags(object_id, tags):
            # Deleted while the tagger was running.
            logger.debug("Object %s gone before tags could be stored", object_id)
            return []
        self.cache.invalidate(path)
        logger.info("Tagged with %s", tags, extra={"object_id": object_id})
        return tags

    async def _with_content(self, chunk_set_id: str, info: TagInput) -> TagInput:
        """Attach a text preview or inline image to the tag input when useful."""
        content_type = info.content_type or ""
        try:
            if _is_text_like(content_type, info.extension):
                head = await self.chunks.head_bytes(
                    chunk_set_id, self.enrichment_config.preview_bytes
                )
                preview = head.decode("utf-8", errors="ignore")[:_PREVIEW_MAX_CHARS]
                return dataclasses.replace(info, preview_text=preview)
            if (
                info.type == "image"
                and 0 < info.size <= self.enrichment_config.inline_image_max_bytes
            ):
                data = await self.chunks.head_bytes(chunk_set_id, info.size)
                return dataclasses.replace(
                    info, image_base64=base64.b64encode(data).decode("ascii")
                )
        except ChunkStoreError as exc:
            logger.warning("No content preview for chunk set %s: %s", chunk_set_id, exc)
        return info

    async def retag(self, obj: StoredObject, path: str = "/") -> list[str]:
        """Run enrichment for an existing object and wait for the result.

        Returns:
            The stored tags, or an empty list when the service produced none
            (the previous tags are then left untouched).
        """
        info = TagInput(
            name=obj.name,
            type=obj.type,
            extension=obj.extension,
            content_type=obj.content_type,
            size=obj.size,
        )
        return await self._apply_tags(obj.id, obj.chunk_set_id, info, path)
