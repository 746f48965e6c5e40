"""
Prometheus metrics registry for the Notably fact store.

Pre-registers all metrics at module load time for better performance
and fail-fast behavior on duplicate metric names.

Metrics follow Prometheus naming conventions:
- snake_case names
- Base unit suffixes (_seconds, _total)
- Descriptive help text
"""

from typing import Dict

from prometheus_client import Counter, Gauge, Histogram, Info

# ==============================================================================
# Configuration
# ==============================================================================

# Standard labels applied to all metrics
STANDARD_LABELS = ["service", "environment", "component"]

LATENCY_BUCKETS = [
    0.0005,  # 0.5ms
    0.001,  # 1ms
    0.005,  # 5ms
    0.010,  # 10ms
    0.025,  # 25ms
    0.050,  # 50ms
    0.100,  # 100ms
    0.250,  # 250ms
    0.500,  # 500ms
    1.000,  # 1s
    5.000,  # 5s
]

COUNT_BUCKETS = [0, 1, 5, 10, 50, 100, 500, 1000, 5000, 10000, 50000]

# ==============================================================================
# Platform Information
# ==============================================================================

PLATFORM_INFO = Info(
    "notably_store",
    "Notably fact store build information",
)

# ==============================================================================
# Store Metrics
# ==============================================================================

FACTS_WRITTEN_TOTAL = Counter(
    "notably_facts_written_total",
    "Total fact versions appended (kind: version|tombstone)",
    STANDARD_LABELS + ["kind"],
)

STORE_OPERATIONS_TOTAL = Counter(
    "notably_store_operations_total",
    "Total fact store operations by outcome",
    STANDARD_LABELS + ["operation", "status"],
)

STORE_OPERATION_DURATION_SECONDS = Histogram(
    "notably_store_operation_duration_seconds",
    "Fact store operation duration in seconds",
    STANDARD_LABELS + ["operation"],
    buckets=LATENCY_BUCKETS,
)

BACKING_STORE_ERRORS_TOTAL = Counter(
    "notably_backing_store_errors_total",
    "Total backing store failures surfaced to callers",
    STANDARD_LABELS + ["operation", "error_type"],
)

# ==============================================================================
# Query Metrics
# ==============================================================================

QUERY_FACTS_RETURNED = Histogram(
    "notably_query_facts_returned",
    "Number of facts returned per query page",
    STANDARD_LABELS + ["scope"],
    buckets=COUNT_BUCKETS,
)

SNAPSHOT_KEYS = Histogram(
    "notably_snapshot_keys",
    "Number of live keys in a reconstructed snapshot",
    STANDARD_LABELS + ["scope"],
    buckets=COUNT_BUCKETS,
)

# ==============================================================================
# Storage Metrics
# ==============================================================================

ADAPTER_PAGES_FETCHED_TOTAL = Counter(
    "notably_adapter_pages_fetched_total",
    "Total pages read from the backing store adapter",
    STANDARD_LABELS + ["scope"],
)

ADAPTER_RETRIES_TOTAL = Counter(
    "notably_adapter_retries_total",
    "Total transport-level retries in a backing store adapter",
    STANDARD_LABELS + ["function"],
)

CONNECTION_POOL_SIZE = Gauge(
    "notably_connection_pool_size",
    "Configured connection pool size",
    STANDARD_LABELS,
)

CONNECTION_POOL_ACTIVE_CONNECTIONS = Gauge(
    "notably_connection_pool_active_connections",
    "Connections currently checked out of the pool",
    STANDARD_LABELS,
)

CONNECTION_POOL_WAIT_TIME_SECONDS = Histogram(
    "notably_connection_pool_wait_time_seconds",
    "Time spent waiting to acquire a pooled connection",
    STANDARD_LABELS,
    buckets=LATENCY_BUCKETS,
)

CONNECTION_POOL_ACQUISITION_TIMEOUTS_TOTAL = Counter(
    "notably_connection_pool_acquisition_timeouts_total",
    "Total pool acquisitions that timed out",
    STANDARD_LABELS,
)

# ==============================================================================
# Registry Helper Functions
# ==============================================================================

_METRIC_REGISTRY: Dict[str, object] = {
    # Store
    "facts_written_total": FACTS_WRITTEN_TOTAL,
    "store_operations_total": STORE_OPERATIONS_TOTAL,
    "store_operation_duration_seconds": STORE_OPERATION_DURATION_SECONDS,
    "backing_store_errors_total": BACKING_STORE_ERRORS_TOTAL,

    # Query
    "query_facts_returned": QUERY_FACTS_RETURNED,
    "snapshot_keys": SNAPSHOT_KEYS,

    # Storage
    "adapter_pages_fetched_total": ADAPTER_PAGES_FETCHED_TOTAL,
    "adapter_retries_total": ADAPTER_RETRIES_TOTAL,
    "connection_pool_size": CONNECTION_POOL_SIZE,
    "connection_pool_active_connections": CONNECTION_POOL_ACTIVE_CONNECTIONS,
    "connection_pool_wait_time_seconds": CONNECTION_POOL_WAIT_TIME_SECONDS,
    "connection_pool_acquisition_timeouts_total": CONNECTION_POOL_ACQUISITION_TIMEOUTS_TOTAL,
}


def get_metric(metric_name: str) -> object:
    """
    Get a pre-registered metric by name.

    Args:
        metric_name: Metric name (without notably_ prefix)

    Returns:
        Prometheus metric object (Counter, Gauge, or Histogram)

    Raises:
        KeyError: If metric name not found in registry
    """
    if metric_name not in _METRIC_REGISTRY:
        raise KeyError(
            f"Metric '{metric_name}' not found in registry. "
            f"Available metrics: {sorted(_METRIC_REGISTRY.keys())}"
        )
    return _METRIC_REGISTRY[metric_name]


def get_counter(metric_name: str) -> Counter:
    """Get a Counter metric."""
    return get_metric(metric_name)


def get_gauge(metric_name: str) -> Gauge:
    """Get a Gauge metric."""
    return get_metric(metric_name)


def get_histogram(metric_name: str) -> Histogram:
    """Get a Histogram metric."""
    return get_metric(metric_name)


def initialize_platform_info(version: str, environment: str, deployment: str):
    """
    Initialize build information metric.

    Args:
        version: Package version (e.g., "0.1.0")
        environment: Environment name (e.g., "local", "production")
        deployment: Deployment ID or timestamp
    """
    PLATFORM_INFO.info({
        "version": version,
        "environment": environment,
        "deployment": deployment,
    })
