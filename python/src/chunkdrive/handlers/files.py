"""File request handlers for chunkdrive.

Implements the file operations:
    - Upload (POST /api/upload, multipart form)
    - StreamUpload (PUT /api/upload/stream, raw body)
    - ListFiles (GET /api/files)
    - Usage (GET /api/files/usage)
    - Download (GET /api/files/{id})
    - GetMeta (GET /api/files/{id}/meta)
    - UpdateFile (PATCH /api/files/{id})
    - SetShares (PUT /api/files/{id}/shares)
    - Retag (POST /api/files/{id}/retag)
    - DeleteFile (DELETE /api/files/{id})
"""

import logging

from fastapi import Request, Response, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from chunkdrive.access import can_modify, can_read
from chunkdrive.catalog.models import StoredObject
from chunkdrive.errors import (
    BadInput,
    ChunkStoreError,
    FileTooLarge,
    Forbidden,
    NotFound,
    Unauthorized,
)
from chunkdrive.handlers.common import BaseHandler
from chunkdrive.upload import UploadRequest
from chunkdrive.validation import (
    normalize_emails,
    parse_sort,
    validate_filename,
    validate_id,
    validate_limit,
    validate_types,
)

logger = logging.getLogger(__name__)

_READ_BLOCK = 64 * 1024


class UpdateFileBody(BaseModel):
    """PATCH body: a new base name, a new public flag, or both."""

    name: str | None = None
    isPublic: bool | None = None
    path: str = "/"


class SharesBody(BaseModel):
    """PUT body replacing an object's share list."""

    emails: list[str]
    path: str = "/"


def _apply_extension(name: str, extension: str) -> str:
    """Keep the object's extension when renaming.

    Clients send the base name; the stored extension is appended unless the
    new name already carries it.
    """
    if not extension or name.lower().endswith(f".{extension}"):
        return name
    return f"{name}.{extension}"


class FileHandler(BaseHandler):
    """Handles uploads, downloads and metadata operations on stored files."""

    # -- Uploads -----------------------------------------------------------------

    async def _upload_owner(self, request: Request, owner_id: str | None) -> str | None:
        """Decide which user an upload belongs to.

        With auth disabled the form's ``ownerId`` is trusted as sent. With
        auth enabled the caller must be signed in and may only upload as
        themselves.
        """
        if not self.config.auth.enabled:
            return owner_id
        identity = await self.identity(request)
        if identity is None:
            raise Unauthorized()
        if owner_id and owner_id != identity.user_id:
            raise Forbidden("Cannot upload on behalf of another user")
        return identity.user_id

    async def upload(
        self,
        request: Request,
        file: UploadFile | None,
        owner_id: str | None,
        account_id: str | None,
        path: str | None,
    ) -> Response:
        """Store a file sent as a multipart form.

        Implements: POST /api/upload

        The form carries ``file``, ``ownerId``, ``accountId`` and ``path``.
        The parsed file is stored through the buffered ingestion path.

        Returns:
            200 with the created object as JSON.
        """
        if file is None:
            raise BadInput("No file provided")
        owner = await self._upload_owner(request, owner_id)

        limit = self.config.storage.max_upload_bytes
        if file.size is not None and file.size > limit:
            raise FileTooLarge(limit)

        data = await file.read()
        obj = await self.uploads.ingest_buffer(
            data,
            UploadRequest(
                filename=file.filename or "",
                content_type=file.content_type,
                owner_id=owner or "",
                account_id=account_id or "",
                path=path or "/",
            ),
        )
        return JSONResponse(obj.to_api())

    async def upload_stream(self, request: Request) -> Response:
        """Store a raw request body without buffering it in full.

        Implements: PUT /api/upload/stream?name=&ownerId=&accountId=&path=

        The body is piped into the chunk store as it arrives; the
        ``Content-Length`` header, when present, is used for the size check
        and for progress reporting.

        Returns:
            200 with the created object as JSON.
        """
        params = request.query_params
        owner = await self._upload_owner(request, params.get("ownerId"))

        declared_size = None
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                declared_size = int(content_length)
            except ValueError:
                raise BadInput("Invalid Content-Length header")

        name = params.get("name") or ""

        def on_progress(written: int, total: int) -> None:
            logger.debug("Upload of %s: %d/%d bytes", name, written, total)

        obj = await self.uploads.ingest_stream(
            request.stream(),
            UploadRequest(
                filename=name,
                content_type=request.headers.get("content-type"),
                owner_id=owner or "",
                account_id=params.get("accountId") or "",
                path=params.get("path") or "/",
            ),
            declared_size=declared_size,
            on_progress=on_progress,
        )
        return JSONResponse(obj.to_api())

    # -- Listing -----------------------------------------------------------------

    async def list_files(self, request: Request) -> Response:
        """List files owned by or shared with the caller.

        Implements: GET /api/files?types=&search=&sort=&limit=&path=

        ``types`` may be repeated or comma separated. Results are served from
        the listing cache when a fresh entry exists for the same path, user
        and query.

        Returns:
            200 with ``{"total": n, "documents": [...]}``.
        """
        identity = await self.require_identity(request)
        params = request.query_params

        types: list[str] = []
        for value in params.getlist("types"):
            types.extend(t.strip() for t in value.split(",") if t.strip())
        types = validate_types(types)

        search = (params.get("search") or "").strip()
        sort = params.get("sort") or None
        sort_column, descending = parse_sort(sort)

        raw_limit = params.get("limit")
        try:
            limit = validate_limit(int(raw_limit) if raw_limit else None)
        except ValueError:
            raise BadInput("limit must be an integer")

        path = params.get("path") or "/"
        key = (identity.user_id, tuple(types), search, sort_column, descending, limit)
        cached = self.cache.get(path, key)
        if cached is not None:
            return JSONResponse(cached)

        total, objects = await self.catalog.list_objects(
            owner_id=identity.user_id,
            owner_email=identity.email,
            types=types,
            search=search,
            sort_column=sort_column,
            descending=descending,
            limit=limit,
        )
        body = {"total": total, "documents": [o.to_api() for o in objects]}
        self.cache.put(path, key, body)
        return JSONResponse(body)

    async def usage(self, request: Request) -> Response:
        """Summarize storage used per file type.

        Implements: GET /api/files/usage

        Returns:
            200 with per-type ``{size, latestDate}`` plus ``used`` and ``all``.
        """
        identity = await self.require_identity(request)
        summary = await self.catalog.aggregate_usage(
            identity.user_id, identity.email, quota=self.config.storage.quota_bytes
        )
        return JSONResponse(summary.to_api())

    # -- Single objects ----------------------------------------------------------

    async def download(self, request: Request, file_id: str) -> Response:
        """Stream a stored file to the caller.

        Implements: GET /api/files/{id}

        Honors a single-range ``Range`` header with 206 Partial Content.

        Returns:
            StreamingResponse with the payload and caching headers.
        """
        identity = await self.identity(request)
        download = await self.downloads.open(
            file_id, identity, request.headers.get("range")
        )
        return StreamingResponse(
            content=download.body,
            status_code=download.status,
            headers=download.headers,
            media_type=download.media_type,
        )

    async def _load(self, file_id: str) -> StoredObject:
        validate_id(file_id)
        obj = await self.catalog.get_object(file_id)
        if obj is None:
            raise NotFound()
        return obj

    async def _load_for_owner(self, request: Request, file_id: str) -> StoredObject:
        identity = await self.require_identity(request)
        obj = await self._load(file_id)
        if not can_modify(obj, identity):
            raise Forbidden()
        return obj

    async def get_meta(self, request: Request, file_id: str) -> Response:
        """Return an object's catalog record.

        Implements: GET /api/files/{id}/meta

        Readable under the same rules as the payload itself.
        """
        identity = await self.identity(request)
        obj = await self._load(file_id)
        if not can_read(obj, identity):
            raise Forbidden()
        return JSONResponse(obj.to_api())

    async def update_file(self, request: Request, file_id: str, body: UpdateFileBody) -> Response:
        """Rename an object and/or toggle its public flag.

        Implements: PATCH /api/files/{id}

        Returns:
            200 with the updated object.
        """
        obj = await self._load_for_owner(request, file_id)
        if body.name is None and body.isPublic is None:
            raise BadInput("Nothing to update")

        if body.name is not None:
            new_name = validate_filename(_apply_extension(body.name.strip(), obj.extension))
            if not await self.catalog.rename_object(obj.id, new_name):
                raise NotFound()
        if body.isPublic is not None:
            if not await self.catalog.set_public(obj.id, body.isPublic):
                raise NotFound()

        self.cache.invalidate(body.path)
        return JSONResponse((await self._load(obj.id)).to_api())

    async def set_shares(self, request: Request, file_id: str, body: SharesBody) -> Response:
        """Replace the list of emails an object is shared with.

        Implements: PUT /api/files/{id}/shares

        Returns:
            200 with the updated object.
        """
        obj = await self._load_for_owner(request, file_id)
        emails = normalize_emails(body.emails)
        if not await self.catalog.set_shared_with(obj.id, emails):
            raise NotFound()
        self.cache.invalidate(body.path)
        return JSONResponse((await self._load(obj.id)).to_api())

    async def retag(self, request: Request, file_id: str) -> Response:
        """Regenerate an object's tags and wait for the result.

        Implements: POST /api/files/{id}/retag?path=

        Returns:
            200 with ``{"tags": [...]}``; empty when the tag service had
            nothing to offer, in which case existing tags are kept.
        """
        obj = await self._load_for_owner(request, file_id)
        path = request.query_params.get("path") or "/"
        tags = await self.uploads.retag(obj, path)
        return JSONResponse({"tags": tags})

    async def delete_file(self, request: Request, file_id: str) -> Response:
        """Delete an object and its chunk set.

        Implements: DELETE /api/files/{id}?path=

        Idempotent: deleting an unknown id succeeds. The catalog record is
        removed first so no record ever points at a deleted chunk set; a
        chunk delete failure is logged and does not fail the request.

        Returns:
            200 with ``{"status": "success"}``.
        """
        identity = await self.require_identity(request)
        validate_id(file_id)
        path = request.query_params.get("path") or "/"

        obj = await self.catalog.get_object(file_id)
        if obj is not None:
            if not can_modify(obj, identity):
                raise Forbidden()
            deleted = await self.catalog.delete_object(file_id)
            if deleted is not None:
                try:
                    await self.chunks.delete(deleted.chunk_set_id)
                except ChunkStoreError:
                    logger.warning(
                        "Failed to delete chunk set %s",
                        deleted.chunk_set_id,
                        exc_info=True,
                        extra={"object_id": file_id},
                    )
                logger.info("Deleted %s", deleted.name, extra={"object_id": file_id})
            self.cache.invalidate(path)

        return JSONResponse({"status": "success"})
