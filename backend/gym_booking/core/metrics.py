"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Coordinator metrics
reservation_operations = Counter(
    'reservation_operations_total',
    'Reservation coordinator operations',
    ['operation', 'outcome']  # join/cancel/accept/walk_in/expire x confirmed/waitlist/error code...
)

reservation_latency = Histogram(
    'reservation_operation_latency_seconds',
    'Reservation coordinator operation latency',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

version_conflicts = Counter(
    'reservation_version_conflicts_total',
    'Class version conflicts that forced a transaction retry',
    ['operation']
)

waitlist_promotions = Counter(
    'waitlist_promotions_total',
    'Waitlist heads promoted into a seat hold',
    ['trigger']  # cancel, expiry
)

seats_released = Counter(
    'seats_released_total',
    'Seats returned to the pool because the waitlist was empty',
    ['trigger']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

# Side-channel failures (never surfaced to callers)
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

notification_failures = Counter(
    'notification_failures_total',
    'Notifications that could not be handed to the sink'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_operation(operation: str, outcome: str):
    """Record a coordinator operation outcome."""
    reservation_operations.labels(operation=operation, outcome=outcome).inc()


def record_version_conflict(operation: str):
    version_conflicts.labels(operation=operation).inc()


def record_promotion(trigger: str):
    waitlist_promotions.labels(trigger=trigger).inc()


def record_seat_released(trigger: str):
    seats_released.labels(trigger=trigger).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
