"""Tests for the Prometheus metrics endpoint and application counters."""

from conftest import signup, upload
from prometheus_client import REGISTRY


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    async def test_metrics_returns_200(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200

    async def test_metrics_content_type(self, client):
        """GET /metrics returns Prometheus text format content type."""
        resp = await client.get("/metrics")
        ct = resp.headers.get("content-type", "")
        assert "text/plain" in ct or "openmetrics" in ct.lower()

    async def test_application_counters_registered(self, client):
        body = (await client.get("/metrics")).text
        for name in (
            "chunkdrive_uploads_total",
            "chunkdrive_downloads_total",
            "chunkdrive_bytes_uploaded_total",
            "chunkdrive_bytes_downloaded_total",
            "chunkdrive_enrichment_total",
        ):
            assert name in body

    async def test_duration_histogram(self, client):
        await client.get("/healthz")
        body = (await client.get("/metrics")).text
        assert "chunkdrive_http_request_duration_seconds" in body


class TestCounters:
    async def test_upload_and_download_counted(self, client):
        user = await signup(client, "metrics@x.com")
        uploads_before = _sample("chunkdrive_uploads_total", status="ok")
        bytes_before = _sample("chunkdrive_bytes_uploaded_total")
        sent_before = _sample("chunkdrive_bytes_downloaded_total")
        partial_before = _sample("chunkdrive_downloads_total", status="partial")

        doc = await upload(client, user, "m.bin", b"x" * 40)
        await client.get(doc["url"], headers={**user["headers"], "Range": "bytes=0-9"})

        assert _sample("chunkdrive_uploads_total", status="ok") == uploads_before + 1
        assert _sample("chunkdrive_bytes_uploaded_total") == bytes_before + 40
        assert _sample("chunkdrive_downloads_total", status="partial") == partial_before + 1
        assert _sample("chunkdrive_bytes_downloaded_total") == sent_before + 10

    async def test_forbidden_download_counted(self, client):
        user = await signup(client, "private@x.com")
        doc = await upload(client, user, "p.bin", b"x")
        before = _sample("chunkdrive_downloads_total", status="forbidden")
        assert (await client.get(doc["url"])).status_code == 403
        assert _sample("chunkdrive_downloads_total", status="forbidden") == before + 1
