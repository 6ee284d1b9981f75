"""Prometheus metrics definitions for s3drive.

All custom metrics use the ``s3drive_`` prefix. These are
*application-level* store operation metrics; the
``prometheus-fastapi-instrumentator`` package provides the HTTP-level ones
(request count, duration, sizes).

Counters reset to zero on restart. Prometheus handles gaps via ``rate()``.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Store operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_uploaded_total: Counter | None = None
bytes_downloaded_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    This must be called once when metrics are enabled. When metrics are
    disabled in config the module-level references stay ``None`` and no
    collectors are registered in the global registry.
    """
    global _initialized
    global operations_total, bytes_uploaded_total, bytes_downloaded_total

    if _initialized:
        return

    operations_total = Counter(
        "s3drive_operations_total",
        "Total drive operations by type and outcome",
        ["operation", "status"],
    )

    bytes_uploaded_total = Counter(
        "s3drive_bytes_uploaded_total",
        "Total bytes written to the store by multipart uploads",
    )

    bytes_downloaded_total = Counter(
        "s3drive_bytes_downloaded_total",
        "Total bytes streamed to clients by file downloads",
    )

    _initialized = True
