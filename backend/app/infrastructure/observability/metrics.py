from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
WEBHOOK_EVENTS_TOTAL = Counter(
    "webhook_events_total",
    "Inbound payment webhook deliveries by outcome",
    labelnames=("outcome", "event_type"),
)
WEBHOOK_HANDLER_FAILURES_TOTAL = Counter(
    "webhook_handler_failures_total",
    "Webhook handler exceptions swallowed after verification",
    labelnames=("event_type",),
)
WEBHOOK_ANOMALIES_TOTAL = Counter(
    "webhook_anomalies_total",
    "Verified webhook events carrying an unexpected payment state",
    labelnames=("event_type", "payment_status"),
)
DONATION_TRANSITIONS_TOTAL = Counter(
    "donation_transitions_total",
    "Donation state transitions evaluated by the webhook engine",
    labelnames=("transition", "result"),
)
PROCESSED_EVENTS_PURGED_TOTAL = Counter(
    "processed_events_purged_total",
    "Durable dedup records removed by the retention sweep",
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


def record_webhook_outcome(outcome: str, event_type: str | None = None) -> None:
    WEBHOOK_EVENTS_TOTAL.labels(outcome=outcome, event_type=event_type or "unknown").inc()


def record_handler_failure(event_type: str) -> None:
    WEBHOOK_HANDLER_FAILURES_TOTAL.labels(event_type=event_type).inc()


def record_webhook_anomaly(event_type: str, payment_status: str | None) -> None:
    WEBHOOK_ANOMALIES_TOTAL.labels(event_type=event_type, payment_status=payment_status or "missing").inc()


def record_donation_transition(transition: str, applied: bool) -> None:
    DONATION_TRANSITIONS_TOTAL.labels(transition=transition, result="applied" if applied else "noop").inc()


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
