"""Shared plumbing for chunkdrive request handlers."""

from fastapi import FastAPI, Request

from chunkdrive.access import Identity
from chunkdrive.auth import resolve_identity
from chunkdrive.errors import Unauthorized


class BaseHandler:
    """Base class giving handlers access to the services on ``app.state``.

    Services are looked up on every access so tests (and the lifespan hook)
    can swap them after the handler is created.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        """Initialize the handler.

        Args:
            app: The FastAPI application instance.
        """
        self.app = app

    @property
    def config(self):
        """Shortcut to the ChunkDriveConfig on app.state."""
        return self.app.state.config

    @property
    def catalog(self):
        """Shortcut to the catalog store on app.state."""
        return self.app.state.catalog

    @property
    def chunks(self):
        """Shortcut to the chunk store on app.state."""
        return self.app.state.chunks

    @property
    def cache(self):
        """Shortcut to the listing cache on app.state."""
        return self.app.state.listing_cache

    @property
    def uploads(self):
        """Shortcut to the upload pipeline on app.state."""
        return self.app.state.uploads

    @property
    def downloads(self):
        """Shortcut to the download pipeline on app.state."""
        return self.app.state.downloads

    @property
    def signer(self):
        """Shortcut to the session signer on app.state."""
        return self.app.state.signer

    async def identity(self, request: Request) -> Identity | None:
        """Resolve the caller once per request; None when anonymous."""
        if not hasattr(request.state, "identity"):
            request.state.identity = await resolve_identity(
                request, self.signer, self.catalog
            )
        return request.state.identity

    async def require_identity(self, request: Request) -> Identity:
        """Resolve the caller, raising Unauthorized when anonymous."""
        identity = await self.identity(request)
        if identity is None:
            raise Unauthorized()
        return identity
