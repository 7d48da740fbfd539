"""Prometheus metric definitions for the payout service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


payout_attempts_total = Counter("payout_attempts_total", "Total payout processor runs", ["service", "trigger"])
payout_outcomes_total = Counter(
    "payout_outcomes_total",
    "Payout processor outcomes by terminal status",
    ["service", "status"],
)
payout_amount_cents_total = Counter("payout_amount_cents_total", "Net cents sent to vendors", ["service", "currency"])
payout_failures_total = Counter("payout_failures_total", "Payout failures by error kind", ["service", "kind"])
payout_latency_seconds = Histogram("payout_latency_seconds", "Payout processor latency seconds", ["service"])
gateway_call_seconds = Histogram(
    "gateway_call_seconds",
    "Transfer gateway call duration seconds",
    ["service", "operation", "outcome"],
)
lock_contention_total = Counter(
    "lock_contention_total",
    "Payout attempts rejected because the vendor lock was held",
    ["service"],
)
retries_total = Counter("retries_total", "Scheduled job retries", ["service", "kind"])
jobs_exhausted_total = Counter("jobs_exhausted_total", "Scheduled jobs removed after retry exhaustion", ["service"])
active_processors = Gauge("active_processors", "Payout processors currently running", ["service"])
scheduled_jobs = Gauge("scheduled_jobs", "Scheduled jobs by status", ["service", "status"])
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
