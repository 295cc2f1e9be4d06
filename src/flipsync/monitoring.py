"""Monitoring configuration for the sync engine."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Sync metrics
sync_passes = Counter(
    "flipsync_sync_passes_total",
    "Total number of sync passes, by outcome",
    ["outcome"],
)

sync_duration = Histogram(
    "flipsync_sync_duration_seconds",
    "Duration of sync passes in seconds",
    buckets=[0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
)

collection_pushes = Counter(
    "flipsync_collection_pushes_total",
    "Total number of collection pushes to the remote store",
    ["collection", "outcome"],
)

sync_conflicts = Counter(
    "flipsync_sync_conflicts_total",
    "Total number of conflicts detected, by strategy",
    ["strategy"],
)

# Retry metrics
retries_scheduled = Counter(
    "flipsync_retries_scheduled_total",
    "Total number of retries scheduled",
    ["operation"],
)

retries_exhausted = Counter(
    "flipsync_retries_exhausted_total",
    "Total number of payloads abandoned after the last retry",
    ["operation"],
)

# Status metrics
pending_changes = Gauge(
    "flipsync_pending_changes",
    "Number of local writes not yet confirmed by the remote store",
)

network_online = Gauge(
    "flipsync_network_online",
    "1 when the remote store is reachable, 0 otherwise",
)

# Cache metrics
cache_hits = Counter(
    "flipsync_cache_hits_total",
    "Total number of reads served from a fresh cache entry",
    ["collection"],
)

cache_misses = Counter(
    "flipsync_cache_misses_total",
    "Total number of reads that went to the remote store",
    ["collection"],
)

stale_reads = Counter(
    "flipsync_stale_reads_total",
    "Total number of reads answered with stale data after a failed refresh",
    ["collection"],
)

# Database metrics
db_operations = Counter(
    "flipsync_db_operations_total",
    "Total number of durable storage operations",
    ["operation_type"],
)

db_errors = Counter(
    "flipsync_db_errors_total",
    "Total number of durable storage errors",
    ["error_type"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
