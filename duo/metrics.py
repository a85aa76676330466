"""Prometheus metrics for the Duo backend.

All metric objects are defined here so they can be imported from any module.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Data service metrics
# ---------------------------------------------------------------------------

REMOTE_REQUESTS = Counter(
    "duo_remote_requests_total",
    "Total requests sent to the hosted data service",
    ["table", "operation", "status"],
)

REMOTE_DURATION = Histogram(
    "duo_remote_request_duration_seconds",
    "Duration of data service requests in seconds",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ---------------------------------------------------------------------------
# State container metrics
# ---------------------------------------------------------------------------

OPTIMISTIC_ROLLBACKS = Counter(
    "duo_optimistic_rollbacks_total",
    "Local mutations reverted after a failed remote request",
    ["action"],
)

CACHE_OPERATIONS = Counter(
    "duo_tag_cache_operations_total",
    "Tag-note cache operations",
    ["operation"],  # hit, miss, invalidate, clear
)

BOOKMARKS_IMPORTED = Counter(
    "duo_bookmarks_imported_total",
    "Bookmarks processed by the importer",
    ["result"],  # created, skipped, failed
)

# ---------------------------------------------------------------------------
# Workspace metrics
# ---------------------------------------------------------------------------

ACTIVE_WORKSPACES = Gauge(
    "duo_active_workspaces",
    "Number of signed-in workspaces held by the API",
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS = Counter(
    "duo_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_DURATION = Histogram(
    "duo_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 30.0),
)
