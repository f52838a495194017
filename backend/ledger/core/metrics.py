# Centralized Prometheus metrics for the ledger. Request middleware
# records timing for every HTTP call; the record_* helpers below are
# called from ingestion, the batcher and the webhook path so payout
# health (conflicts, retries, failures) shows up on dashboards.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

EARNINGS_INGESTED_TOTAL = Counter(
    "earnings_ingested_total",
    "Tracking transactions ingested into the ledger",
    ["outcome"],  # created|duplicate|rejected
)
EARNING_TRANSITIONS_TOTAL = Counter(
    "earning_transitions_total",
    "Earning status transitions applied",
    ["from_status", "to_status"],
)
CAS_CONFLICTS_TOTAL = Counter(
    "cas_conflicts_total",
    "Versioned compare-and-swap writes that lost their race",
    ["entity"],
)
PAYOUT_BATCHES_TOTAL = Counter(
    "payout_batches_total",
    "Payout batches created",
    ["reason"],
)
PAYOUT_SUBMISSIONS_TOTAL = Counter(
    "payout_submissions_total",
    "Disbursement submissions by outcome",
    ["outcome"],  # submitted|retry|failed
)
PAYOUT_RUN_SECONDS = Histogram(
    "payout_run_seconds",
    "Batch run duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120],
)
WEBHOOK_EVENTS_TOTAL = Counter(
    "payout_webhook_events_total",
    "Disbursement webhook events received",
    ["event_type", "outcome"],
)
JOB_RUN_TOTAL = Counter(
    "job_run_total",
    "Background job runs",
    ["job_name", "status"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_ingestion(outcome: str) -> None:
    EARNINGS_INGESTED_TOTAL.labels(outcome=_label(outcome)).inc()


def record_earning_transition(from_status: str | None, to_status: str | None) -> None:
    EARNING_TRANSITIONS_TOTAL.labels(
        from_status=_label(from_status),
        to_status=_label(to_status),
    ).inc()


def record_cas_conflict(entity: str) -> None:
    CAS_CONFLICTS_TOTAL.labels(entity=_label(entity)).inc()


def record_batch_created(reason: str | None) -> None:
    PAYOUT_BATCHES_TOTAL.labels(reason=_label(reason)).inc()


def record_submission(outcome: str) -> None:
    PAYOUT_SUBMISSIONS_TOTAL.labels(outcome=_label(outcome)).inc()


def record_batch_run(seconds: float) -> None:
    PAYOUT_RUN_SECONDS.observe(seconds)


def record_webhook_event(event_type: str | None, outcome: str) -> None:
    WEBHOOK_EVENTS_TOTAL.labels(
        event_type=_label(event_type),
        outcome=_label(outcome),
    ).inc()


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUN_TOTAL.labels(
        job_name=_label(job_name),
        status="success" if success else "failure",
    ).inc()
