"""
Prometheus Metrics Module

Counters for the asset lifecycle, exposed at /metrics for scraping.
"""

from prometheus_client import Counter, Info

APP_INFO = Info("eventlens_app", "eventlens application information")


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})


# =============================================================================
# Asset Pipeline
# =============================================================================

MEDIA_UPLOADS_TOTAL = Counter(
    "eventlens_media_uploads_total",
    "Media uploads by outcome",
    ["outcome"],  # stored, rejected, storage_error, persist_error
)

MEDIA_UPLOAD_BYTES_TOTAL = Counter(
    "eventlens_media_upload_bytes_total",
    "Bytes of original media stored",
)

DERIVATION_FAILURES_TOTAL = Counter(
    "eventlens_derivation_failures_total",
    "Thumbnail or metadata derivations that failed",
    ["category"],
)

# =============================================================================
# Reconciliation and Deletion
# =============================================================================

GHOST_OBJECTS_DELETED_TOTAL = Counter(
    "eventlens_ghost_objects_deleted_total",
    "Unreferenced storage objects removed by the ghost-file sweep",
)

CASCADE_PARTIAL_FAILURES_TOTAL = Counter(
    "eventlens_cascade_partial_failures_total",
    "Cascade deletions that left dependents behind",
    ["operation"],
)


def record_upload(outcome: str, size: int = 0) -> None:
    MEDIA_UPLOADS_TOTAL.labels(outcome=outcome).inc()
    if outcome == "stored" and size:
        MEDIA_UPLOAD_BYTES_TOTAL.inc(size)


def record_derivation_failure(category: str) -> None:
    DERIVATION_FAILURES_TOTAL.labels(category=category).inc()


def record_ghost_deletions(count: int) -> None:
    if count:
        GHOST_OBJECTS_DELETED_TOTAL.inc(count)


def record_cascade_failure(operation: str) -> None:
    CASCADE_PARTIAL_FAILURES_TOTAL.labels(operation=operation).inc()
