"""Prometheus metrics for report fetches, token refreshes and sync outcomes"""

from prometheus_client import Counter, Histogram

# Report API metrics
report_fetch_counter = Counter(
    "qbo_report_fetch_total",
    "QuickBooks report API calls",
    ["report_type", "outcome"],  # ok | unauthorized | transient | error
)

report_fetch_histogram = Histogram(
    "qbo_report_fetch_seconds",
    "QuickBooks report API response time",
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

token_refresh_counter = Counter(
    "qbo_token_refresh_total",
    "OAuth token refresh attempts",
    ["outcome"],  # refreshed | coalesced | failed
)

# Sync metrics
sync_outcome_counter = Counter(
    "qbo_sync_outcome_total",
    "Account sync runs by final status",
    ["status"],
)

sync_retry_counter = Counter(
    "qbo_sync_retry_total",
    "Report syncs retried after a transient failure",
)

lines_persisted_counter = Counter(
    "qbo_report_lines_persisted_total",
    "Report lines written to the database",
    ["report_type"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_report_fetch(report_type: str, outcome: str) -> None:
    report_fetch_counter.labels(report_type=report_type, outcome=outcome).inc()


def record_sync_outcome(status: str) -> None:
    """Record the final status of one account sync run"""
    sync_outcome_counter.labels(status=status).inc()
