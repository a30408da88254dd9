"""
Prometheus metrics for the Tubely API.

Metrics are exposed at /metrics in Prometheus text format.
"""

from prometheus_client import Counter, Histogram, Info, generate_latest

# Application info
APP_INFO = Info("tubely", "Tubely application information")

# =============================================================================
# Upload Metrics
# =============================================================================

VIDEO_UPLOADS_TOTAL = Counter(
    "tubely_video_uploads_total",
    "Total video uploads",
    ["result"],  # success, rejected, failed
)

THUMBNAIL_UPLOADS_TOTAL = Counter(
    "tubely_thumbnail_uploads_total",
    "Total thumbnail uploads",
    ["result"],  # success, rejected, failed
)

INGEST_FAILURES_TOTAL = Counter(
    "tubely_ingest_failures_total",
    "Video ingestion failures by pipeline step",
    ["step"],  # buffer, classify, repackage, upload, commit, sign
)

INGEST_DURATION_SECONDS = Histogram(
    "tubely_ingest_duration_seconds",
    "Time from buffered upload to committed record",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

COMPENSATING_DELETES_TOTAL = Counter(
    "tubely_compensating_deletes_total",
    "Object deletes issued after a failed metadata commit",
    ["result"],  # success, failed
)

# =============================================================================
# Storage Metrics
# =============================================================================

STORAGE_OPERATIONS_TOTAL = Counter(
    "tubely_storage_operations_total",
    "Total object store operations",
    ["operation", "result"],  # operation: put, delete. result: success, failed, timeout
)

STORAGE_BYTES_WRITTEN = Counter(
    "tubely_storage_bytes_written_total",
    "Total bytes written to the object store",
)

# =============================================================================
# Database Metrics
# =============================================================================

DB_QUERY_RETRIES_TOTAL = Counter(
    "tubely_db_query_retries_total",
    "Total database query retries due to transient errors",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics in text format."""
    return generate_latest()


def init_app_info(version: str = "0.1.0"):
    """Initialize application info metric."""
    APP_INFO.info({"version": version, "app": "tubely"})
