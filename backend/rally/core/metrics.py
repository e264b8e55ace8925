"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Purchase metrics
purchase_outcomes = Counter(
    'rally_purchase_outcomes_total',
    'Checkout attempts by final outcome',
    ['outcome']  # settled, pending, cancelled, failed, free_claimed
)

rail_outcomes = Counter(
    'rally_rail_outcomes_total',
    'Payment rail results',
    ['rail', 'outcome']  # succeeded, cancelled, failed, pending
)

# Settlement metrics
settlement_runs = Counter(
    'rally_settlement_runs_total',
    'Settlement invocations',
    ['source', 'result']  # client/webhook/free_claim, settled/duplicate/throttled
)

settlement_latency = Histogram(
    'rally_settlement_latency_seconds',
    'Time spent performing settlement side effects',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

ledger_debits = Counter(
    'rally_ledger_debits_total',
    'Credit ledger debit attempts',
    ['result']  # debited, duplicate, insufficient, error
)

ledger_retries = Counter(
    'rally_ledger_retry_attempts_total',
    'Ledger retries due to balance version conflicts'
)

attendance_writes = Counter(
    'rally_attendance_writes_total',
    'Attendee set writes',
    ['result']  # added, waitlisted, already_present, failed
)

pending_debit_events = Counter(
    'rally_pending_debits_total',
    'Compensation queue activity for best-effort debits',
    ['event']  # enqueued, completed, abandoned
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_circuit_breaker_open = Gauge(
    'redis_circuit_breaker_open',
    'Redis circuit breaker state (1=open, 0=closed)'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_rail_outcome(rail: str, outcome: str):
    rail_outcomes.labels(rail=rail, outcome=outcome).inc()


def record_settlement(source: str, result: str):
    settlement_runs.labels(source=source, result=result).inc()


def record_ledger_debit(result: str):
    """Result: debited, duplicate, insufficient, error"""
    ledger_debits.labels(result=result).inc()


def record_attendance_write(result: str):
    attendance_writes.labels(result=result).inc()
