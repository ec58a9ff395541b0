"""Prometheus metrics definitions for chunkdrive.

All custom metrics use the ``chunkdrive_`` prefix. The
``prometheus-fastapi-instrumentator`` package provides the HTTP-level
metrics (request count, duration, sizes); these are the application-level
counters for uploads, downloads and enrichment.

Counters reset to zero on restart.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

uploads_total: Counter | None = None
downloads_total: Counter | None = None
bytes_uploaded_total: Counter | None = None
bytes_downloaded_total: Counter | None = None
enrichment_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once. When metrics are disabled in config this is
    never called, the module-level references stay ``None`` and the helper
    functions below are no-ops.
    """
    global _initialized
    global uploads_total, downloads_total
    global bytes_uploaded_total, bytes_downloaded_total, enrichment_total

    if _initialized:
        return

    uploads_total = Counter(
        "chunkdrive_uploads_total",
        "Total uploads by outcome",
        ["status"],
    )
    downloads_total = Counter(
        "chunkdrive_downloads_total",
        "Total download requests by outcome",
        ["status"],
    )
    bytes_uploaded_total = Counter(
        "chunkdrive_bytes_uploaded_total",
        "Total bytes written to the chunk store by uploads",
    )
    bytes_downloaded_total = Counter(
        "chunkdrive_bytes_downloaded_total",
        "Total bytes streamed to download callers",
    )
    enrichment_total = Counter(
        "chunkdrive_enrichment_total",
        "Tag enrichment attempts by outcome",
        ["outcome"],
    )

    _initialized = True


def record_upload(status: str, size: int = 0) -> None:
    if uploads_total is not None:
        uploads_total.labels(status=status).inc()
    if size > 0 and bytes_uploaded_total is not None:
        bytes_uploaded_total.inc(size)


def record_download(status: str) -> None:
    if downloads_total is not None:
        downloads_total.labels(status=status).inc()


def record_bytes_sent(size: int) -> None:
    if size > 0 and bytes_downloaded_total is not None:
        bytes_downloaded_total.inc(size)


def record_enrichment(outcome: str) -> None:
    if enrichment_total is not None:
        enrichment_total.labels(outcome=outcome).inc()
