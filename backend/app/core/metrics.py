"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Allocation metrics
allocation_attempts = Counter(
    'allocation_attempts_total',
    'Table allocation attempts',
    ['result']  # assigned, unavailable, conflict, concurrency_conflict
)

planner_latency = Histogram(
    'planner_latency_seconds',
    'Assignment planner latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Lifecycle metrics
status_transitions = Counter(
    'booking_status_transitions_total',
    'Applied booking status transitions',
    ['to_status']
)

concurrency_conflicts = Counter(
    'concurrency_conflicts_total',
    'Optimistic lock failures on bookings or tables',
    ['resource']  # booking, table
)

# Waitlist metrics
waitlist_promotions = Counter(
    'waitlist_promotions_total',
    'Waitlist promotion attempts',
    ['result']  # promoted, queued, expired
)

# Notification metrics
notification_failures = Counter(
    'notification_failures_total',
    'Notification dispatch failures (never rolled back)',
    ['event']
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
def record_allocation(result: str):
    """Record allocation attempt. Result: assigned, unavailable, conflict, concurrency_conflict"""
    allocation_attempts.labels(result=result).inc()

def record_transition(to_status: str):
    status_transitions.labels(to_status=to_status).inc()

def record_concurrency_conflict(resource: str):
    """Record a lost compare-and-swap. Resource: booking, table"""
    concurrency_conflicts.labels(resource=resource).inc()

def record_waitlist_promotion(result: str, count: int = 1):
    waitlist_promotions.labels(result=result).inc(count)

def record_notification_failure(event: str):
    notification_failures.labels(event=event).inc()
