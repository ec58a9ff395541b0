"""FastAPI application factory and route setup for chunkdrive."""

import asyncio
import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, File, Form, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chunkdrive.auth import SessionSigner
from chunkdrive.cache import ListingCache
from chunkdrive.catalog import create_catalog
from chunkdrive.catalog.store import CatalogStore
from chunkdrive.config import DEFAULT_AUTH_SECRET, ChunkDriveConfig
from chunkdrive.download import DownloadPipeline
from chunkdrive.enrichment import TagGenerator
from chunkdrive.errors import BadInput, DriveError, InternalError
from chunkdrive.handlers.files import FileHandler, SharesBody, UpdateFileBody
from chunkdrive.handlers.users import SignInBody, SignUpBody, UserHandler
from chunkdrive.storage import create_chunk_store
from chunkdrive.storage.chunks import ChunkStore
from chunkdrive.upload import UploadPipeline

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus gauge in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


def attach_services(
    app: FastAPI,
    catalog: CatalogStore,
    chunks: ChunkStore,
    tagger: TagGenerator | None = None,
) -> None:
    """Wire initialized stores and the services built on them onto ``app.state``.

    Used by the lifespan hook, and by tests that initialize stores
    themselves because ASGITransport does not run the lifespan.

    Args:
        app: The application whose ``state.config`` is already set.
        catalog: An initialized catalog store.
        chunks: An initialized chunk store.
        tagger: Tag generator; one is built from config when omitted.
    """
    config: ChunkDriveConfig = app.state.config
    if tagger is None:
        tagger = TagGenerator(config.enrichment)
    cache = ListingCache(config.cache.listing_ttl_seconds)

    app.state.catalog = catalog
    app.state.chunks = chunks
    app.state.tagger = tagger
    app.state.listing_cache = cache
    app.state.signer = SessionSigner(
        config.auth.secret,
        config.auth.session_ttl_seconds,
        cookie_name=config.auth.cookie_name,
    )
    app.state.uploads = UploadPipeline(
        catalog=catalog,
        chunks=chunks,
        tagger=tagger,
        cache=cache,
        storage_config=config.storage,
        enrichment_config=config.enrichment,
    )
    app.state.downloads = DownloadPipeline(catalog, chunks)


def _ensure_parent_dir(db_path: str) -> None:
    if db_path == ":memory:" or db_path.startswith("file:"):
        return
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: ChunkDriveConfig) -> FastAPI:
    """Create and configure the chunkdrive FastAPI application.

    The lifespan context manager opens the catalog and chunk store on
    startup and closes them on shutdown (crash-only: every startup is
    recovery, including sweeping chunk sets left without a catalog record).

    Args:
        config: The loaded chunkdrive configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan hook: open stores, sweep orphans, wire services."""
        _ensure_parent_dir(config.storage.sqlite_path)
        if config.auth.enabled and config.auth.secret == DEFAULT_AUTH_SECRET:
            logger.warning("auth.secret is the built-in development value; set it in production")

        catalog = create_catalog(config.storage)
        await catalog.init_db()

        chunks = create_chunk_store(config.storage)
        await chunks.init()
        swept = await chunks.sweep_orphans(await catalog.chunk_set_ids())

        tagger = TagGenerator(config.enrichment)
        attach_services(app, catalog, chunks, tagger)

        logger.info(
            "Stores initialized at %s (%d orphaned chunk sets swept, enrichment %s)",
            config.storage.sqlite_path,
            swept,
            "on" if tagger.enabled else "off",
        )

        yield

        try:
            await asyncio.wait_for(
                app.state.uploads.drain(), timeout=config.server.shutdown_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Abandoning %d enrichment tasks at shutdown",
                app.state.uploads.pending_enrichments,
            )
        await tagger.aclose()
        await chunks.close()
        await catalog.close()
        logger.info("Chunk store and catalog closed")

    app = FastAPI(
        title="chunkdrive",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    if config.observability.metrics:
        import chunkdrive.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="chunkdrive").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(exc: DriveError, request: Request) -> Response:
    request_id = getattr(request.state, "request_id", "")
    return JSONResponse(exc.to_dict(request_id), status_code=exc.http_status)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(DriveError)
    async def drive_error_handler(request: Request, exc: DriveError) -> Response:
        """Render DriveError exceptions as JSON error bodies."""
        return _error_response(exc, request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI request validation errors to BadInput."""
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"
        return _error_response(BadInput(combined), request)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return _error_response(
            InternalError("We encountered an internal error. Please try again."), request
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register the request-id and access-log middleware."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health", "/healthz", "/readyz"}

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Tag every response with X-Request-Id and log one line per request.

        The request id (16-char uppercase hex) is stored on request.state so
        exception handlers can put it in error bodies.
        """
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------


async def _probe(store, name: str) -> dict:
    """Ping a store, returning a dict with ``status`` and ``latency_ms`` keys."""
    if store is None:
        return {"status": "error", "error": f"{name} not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await store.ping()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


async def _check_all(app: FastAPI) -> tuple[bool, dict]:
    catalog_check = await _probe(getattr(app.state, "catalog", None), "catalog")
    chunks_check = await _probe(getattr(app.state, "chunks", None), "chunk store")
    all_ok = catalog_check["status"] == "ok" and chunks_check["status"] == "ok"
    return all_ok, {"catalog": catalog_check, "chunks": chunks_check}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: ChunkDriveConfig) -> None:
    """Register all routes on the application.

    Fixed paths such as /api/files/usage are registered before the
    /api/files/{file_id} routes so they are not captured as ids.

    Args:
        app: The FastAPI application to attach routes to.
        config: The chunkdrive configuration.
    """
    file_handler = FileHandler(app)
    user_handler = UserHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check() -> Response:
        """Return health status.

        When health_check is enabled: ping the catalog and chunk store and
        return JSON with component checks and latency_ms.
        When disabled: return static ``{"status": "ok"}``.
        """
        if not health_check_enabled:
            return Response(content='{"status":"ok"}', media_type="application/json")

        all_ok, checks = await _check_all(app)
        body = json.dumps({"status": "ok" if all_ok else "degraded", "checks": checks})
        return Response(
            content=body,
            status_code=200 if all_ok else 503,
            media_type="application/json",
        )

    if health_check_enabled:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness probe. Returns 200 with empty body."""
            return Response(status_code=200)

        @app.get("/readyz")
        async def readyz() -> Response:
            """Readiness probe. 200 (empty) if both stores answer, else 503."""
            all_ok, _ = await _check_all(app)
            return Response(status_code=200 if all_ok else 503)

    # -- Accounts ----------------------------------------------------------------

    @app.post("/api/auth/signup")
    async def handle_signup(body: SignUpBody, request: Request) -> Response:
        return await user_handler.signup(request, body)

    @app.post("/api/auth/signin")
    async def handle_signin(body: SignInBody, request: Request) -> Response:
        return await user_handler.signin(request, body)

    @app.post("/api/auth/signout")
    async def handle_signout(request: Request) -> Response:
        return await user_handler.signout(request)

    @app.get("/api/auth/me")
    async def handle_me(request: Request) -> Response:
        return await user_handler.me(request)

    @app.get("/api/users/search")
    async def handle_user_search(request: Request) -> Response:
        return await user_handler.search(request)

    # -- Uploads -----------------------------------------------------------------

    @app.post("/api/upload")
    async def handle_upload(
        request: Request,
        file: UploadFile | None = File(None),
        ownerId: str | None = Form(None),
        accountId: str | None = Form(None),
        path: str | None = Form(None),
    ) -> Response:
        """Handle POST /api/upload -- multipart form upload."""
        return await file_handler.upload(request, file, ownerId, accountId, path)

    @app.put("/api/upload/stream")
    async def handle_stream_upload(request: Request) -> Response:
        """Handle PUT /api/upload/stream -- raw streaming upload."""
        return await file_handler.upload_stream(request)

    # -- Files -------------------------------------------------------------------

    @app.get("/api/files")
    async def handle_list_files(request: Request) -> Response:
        return await file_handler.list_files(request)

    @app.get("/api/files/usage")
    async def handle_usage(request: Request) -> Response:
        return await file_handler.usage(request)

    @app.get("/api/files/{file_id}")
    async def handle_download(file_id: str, request: Request) -> Response:
        return await file_handler.download(request, file_id)

    @app.get("/api/files/{file_id}/meta")
    async def handle_meta(file_id: str, request: Request) -> Response:
        return await file_handler.get_meta(request, file_id)

    @app.patch("/api/files/{file_id}")
    async def handle_update(file_id: str, body: UpdateFileBody, request: Request) -> Response:
        return await file_handler.update_file(request, file_id, body)

    @app.put("/api/files/{file_id}/shares")
    async def handle_shares(file_id: str, body: SharesBody, request: Request) -> Response:
        return await file_handler.set_shares(request, file_id, body)

    @app.post("/api/files/{file_id}/retag")
    async def handle_retag(file_id: str, request: Request) -> Response:
        return await file_handler.retag(request, file_id)

    @app.delete("/api/files/{file_id}")
    async def handle_delete(file_id: str, request: Request) -> Response:
        return await file_handler.delete_file(request, file_id)
