"""
Prometheus metrics for the PartsMatch API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Marketplace outcome counters: match events, messages, notifications,
  bulk ingestion runs and session events

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# event: created, agreed, both_agreed
match_events_total = Counter(
    "match_events_total",
    "Match lifecycle events",
    labelnames=["event"]
)

# result: sent, ignored
messages_sent_total = Counter(
    "messages_sent_total",
    "Chat message send outcomes",
    labelnames=["result"]
)

# result: sent, skipped, failed
notifications_total = Counter(
    "notifications_total",
    "Match notification dispatch outcomes",
    labelnames=["result"]
)

# result: success, integration_error, extraction_error, store_error
ingestion_requests_total = Counter(
    "ingestion_requests_total",
    "Bulk text ingestion outcomes",
    labelnames=["result"]
)

# event: SIGNED_IN, SIGNED_OUT
session_events_total = Counter(
    "session_events_total",
    "Account session changes",
    labelnames=["event"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template (e.g. /matches/{match_id}) or raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_match_event(event: str) -> None:
    match_events_total.labels(event=event).inc()


def record_message_outcome(result: str) -> None:
    messages_sent_total.labels(result=result).inc()


def record_notification_outcome(result: str) -> None:
    notifications_total.labels(result=result).inc()


def record_ingestion_outcome(result: str) -> None:
    ingestion_requests_total.labels(result=result).inc()


def record_session_event(event: str) -> None:
    session_events_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string for Prometheus exposition format
    """
    return CONTENT_TYPE_LATEST
