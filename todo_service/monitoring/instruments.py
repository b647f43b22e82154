"""Instrument catalogue registered once at application start."""

from __future__ import annotations

from todo_service.lib.metrics import MetricsRegistry

UP = "up"
HTTP_REQUESTS = "http_requests_total"
HTTP_DURATION = "http_request_duration_seconds"
ITEMS_CREATED = "items_created_total"
QUERY_DURATION = "db_query_duration_seconds"
QUERY_ERRORS = "db_query_errors_total"
CONNECTIONS_ACTIVE = "db_connections_active"
CONNECTION_SAMPLES_SKIPPED = "db_connection_samples_skipped_total"

HTTP_LABELS = ("method", "path", "status_code")
HTTP_DURATION_BUCKETS = (0.003, 0.03, 0.1, 0.3, 1.5, 10)
QUERY_DURATION_BUCKETS = (0.1, 0.5, 1, 2, 5)


def register_instruments(registry: MetricsRegistry) -> MetricsRegistry:
    """Register HTTP, database and domain instruments on ``registry``.

    Registering twice raises ``DuplicateNameError``, which aborts start-up.
    """

    registry.gauge(UP, "1 while the service is running")
    registry.counter(HTTP_REQUESTS, "Total HTTP requests handled", HTTP_LABELS)
    registry.histogram(
        HTTP_DURATION,
        "Duration of HTTP requests in seconds",
        HTTP_DURATION_BUCKETS,
        HTTP_LABELS,
    )
    registry.counter(ITEMS_CREATED, "Total number of todos created")
    registry.histogram(QUERY_DURATION, "Duration of database queries in seconds", QUERY_DURATION_BUCKETS)
    registry.counter(QUERY_ERRORS, "Total number of failed database queries")
    registry.gauge(CONNECTIONS_ACTIVE, "Number of active database connections")
    registry.counter(
        CONNECTION_SAMPLES_SKIPPED,
        "Connection samples skipped because the previous one was still running",
    )
    return registry
