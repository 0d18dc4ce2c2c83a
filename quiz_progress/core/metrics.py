"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning module
imports it and increments at the point of action.  Scraped via GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# --- HTTP (RequestContextMiddleware) ---

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# --- Ingestion ---

EVENTS_INGESTED = Counter(
    "progress_events_ingested_total",
    "Progress rows written (inserted or upserted) by record type",
    ["record_type"],
)

DUPLICATES_SUPPRESSED = Counter(
    "progress_duplicates_suppressed_total",
    "Writes skipped by the dedupe window",
    ["record_type"],
)

BEACON_FAILURES = Counter(
    "progress_beacon_failures_total",
    "Beacon syncs that failed internally but still answered 200",
)

# --- Fanout / cache ---

FANOUT_PUBLISHED = Counter(
    "progress_fanout_published_total",
    "Live-update publishes by result",
    ["result"],  # "ok" or "error"
)

LIVE_CONNECTIONS = Gauge(
    "progress_live_connections",
    "Open WebSocket live-update connections on this instance",
)

STATS_CACHE = Counter(
    "progress_stats_cache_total",
    "Stats cache lookups by result",
    ["result"],  # "hit" or "miss"
)
