"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation attempts',
    ['result']  # success, not_found, conflict, already_booked, quota_exceeded, validation_error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation allocation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

reservation_cancellations = Counter(
    'reservation_cancellations_total',
    'Reservation cancellations',
    ['stall_released']  # true, false
)

# Stall state machine
stall_transition_conflicts = Counter(
    'stall_transition_conflicts_total',
    'Conditional stall transitions that lost a race',
    ['from_status', 'to_status']
)

# Notification metrics
notification_deliveries = Counter(
    'notification_deliveries_total',
    'Confirmation notification outcomes',
    ['result']  # sent, retry, failed
)

notifications_in_flight = Gauge(
    'notifications_in_flight',
    'Confirmation notifications scheduled but not yet finished'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_reservation_attempt(result: str):
    """Record reservation attempt outcome (success or an error code)."""
    reservation_attempts.labels(result=result).inc()


def record_cancellation(stall_released: bool):
    reservation_cancellations.labels(stall_released=str(stall_released).lower()).inc()


def record_transition_conflict(from_status: str, to_status: str):
    stall_transition_conflicts.labels(from_status=from_status, to_status=to_status).inc()


def record_notification(result: str):
    """Record notification outcome. Result: sent, retry, failed"""
    notification_deliveries.labels(result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
