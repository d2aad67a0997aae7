"""Prometheus metrics definitions for GameHub.

Tracks:
- Port arena allocation outcomes
- Lifecycle operations and container engine calls
- Streaming sessions and dropped frames
"""

from prometheus_client import Counter, Gauge, Histogram

# Engine calls range from fast inspects to slow stops (grace period)
_BUCKETS_SLOW = (
    0.05, 0.1, 0.2, 0.4, 0.8, 1.5,
    3, 6, 12, 24, 48,
)

# =============================================================================
# Provisioning
# =============================================================================

PORT_ALLOCATIONS_TOTAL = Counter(
    "gamehub_port_allocations_total",
    "Port allocation attempts",
    ["result"],  # reserved, exhausted
)

PORT_BIND_FAILURES_TOTAL = Counter(
    "gamehub_port_bind_failures_total",
    "Ports skipped because the OS bind test failed",
)

PORTS_IN_USE = Gauge(
    "gamehub_ports_in_use",
    "Ports currently reserved or bound",
)

# =============================================================================
# Lifecycle
# =============================================================================

LIFECYCLE_OPERATIONS_TOTAL = Counter(
    "gamehub_lifecycle_operations_total",
    "Lifecycle operations",
    ["operation", "result"],  # result: success, conflict, error
)

LIFECYCLE_DURATION = Histogram(
    "gamehub_lifecycle_duration_seconds",
    "Duration of lifecycle operations",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

DOCKER_DURATION = Histogram(
    "gamehub_docker_duration_seconds",
    "Duration of Docker operations",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

DOCKER_ERRORS = Counter(
    "gamehub_docker_errors_total",
    "Total Docker operation errors",
    ["operation", "error_type"],  # error_type: unavailable, api_error
)

CIRCUIT_BREAKER_STATE = Gauge(
    "gamehub_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["circuit"],
)

CIRCUIT_BREAKER_REJECTIONS_TOTAL = Counter(
    "gamehub_circuit_breaker_rejections_total",
    "Calls rejected by an open circuit",
    ["circuit"],
)

# =============================================================================
# Streaming
# =============================================================================

STREAM_SESSIONS = Gauge(
    "gamehub_stream_sessions",
    "Open streaming sessions",
    ["kind"],
)

STREAM_REJECTIONS_TOTAL = Counter(
    "gamehub_stream_rejections_total",
    "Streaming connections rejected before accept",
    ["kind", "reason"],
)

STREAM_DROPPED_FRAMES_TOTAL = Counter(
    "gamehub_stream_dropped_frames_total",
    "Frames dropped by bounded session channels",
    ["kind"],
)

METRICS_SAMPLERS = Gauge(
    "gamehub_metrics_samplers",
    "Active per-instance metrics readers",
)
