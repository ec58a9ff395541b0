"""Shared pytest fixtures for chunkdrive tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
gauges in the global prometheus_client registry).

The catalog and chunk store are initialized per test and wired onto the
app with ``attach_services`` because the lifespan context does not run
under ASGITransport.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from chunkdrive.catalog.sqlite import SQLiteCatalog
from chunkdrive.config import (
    AuthConfig,
    ChunkDriveConfig,
    EnrichmentConfig,
    ServerConfig,
    StorageConfig,
)
from chunkdrive.server import attach_services, create_app
from chunkdrive.storage.sqlite import SQLiteChunkStore

# Small chunks so modest payloads span several chunks.
TEST_CHUNK_SIZE = 16
TEST_MAX_UPLOAD = 64 * 1024


@pytest.fixture(scope="session")
def config() -> ChunkDriveConfig:
    """Create a test ChunkDriveConfig with auth on and enrichment off."""
    return ChunkDriveConfig(
        server=ServerConfig(host="127.0.0.1", port=8090),
        auth=AuthConfig(enabled=True, secret="test-secret"),
        storage=StorageConfig(
            sqlite_path=":memory:",
            chunk_size_bytes=TEST_CHUNK_SIZE,
            max_upload_bytes=TEST_MAX_UPLOAD,
        ),
        enrichment=EnrichmentConfig(enabled=False, api_key=""),
    )


@pytest.fixture(scope="session")
def app(config: ChunkDriveConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def catalog():
    """A fresh in-memory catalog."""
    c = SQLiteCatalog(":memory:")
    await c.init_db()
    yield c
    await c.close()


@pytest.fixture
async def chunks():
    """A fresh in-memory chunk store with small chunks."""
    s = SQLiteChunkStore(":memory:", chunk_size=TEST_CHUNK_SIZE)
    await s.init()
    yield s
    await s.close()


@pytest.fixture
async def client(app, catalog, chunks) -> AsyncClient:
    """Create an async test client for the chunkdrive app.

    Wires fresh stores onto app.state before each test and waits for any
    enrichment tasks the test started before the stores are closed.
    """
    attach_services(app, catalog, chunks)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app.state.uploads.drain()


async def signup(client: AsyncClient, email: str, full_name: str = "Test User") -> dict:
    """Create an account through the API.

    Returns:
        A dict with ``id``, ``email`` and ``headers`` (a Bearer
        Authorization header for the new session).
    """
    resp = await client.post(
        "/api/auth/signup",
        json={"fullName": full_name, "email": email, "password": "correct-horse"},
    )
    assert resp.status_code == 201, resp.text
    # Sessions travel as explicit Bearer headers so anonymous requests stay anonymous.
    client.cookies.clear()
    body = resp.json()
    return {
        "id": body["user"]["$id"],
        "email": body["user"]["email"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


async def upload(
    client: AsyncClient,
    user: dict,
    name: str,
    data: bytes,
    content_type: str = "application/octet-stream",
    path: str = "/",
) -> dict:
    """Upload a file through the multipart endpoint and return its JSON."""
    resp = await client.post(
        "/api/upload",
        files={"file": (name, data, content_type)},
        data={"ownerId": user["id"], "accountId": user["id"], "path": path},
        headers=user["headers"],
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
