"""
Prometheus metrics for the webhook service.

This module provides:
- HTTP request counter (method, path, status)
- Webhook outcome counter (result)
- Webhook event counter (event_type)
- Fan-out failure counter (kind)
- Request latency histogram (method, path)

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

# result: created, duplicate, processed, ignored, invalid_signature,
# invalid_json, error
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

# event_type: message, message.ack, group.participants, message_revoked,
# message_edited, unknown
webhook_events_total = Counter(
    "webhook_events_total",
    "Classified webhook events",
    labelnames=["event_type"]
)

# kind: media, location, contact card, reaction
webhook_fanout_failures_total = Counter(
    "webhook_fanout_failures_total",
    "Message sub-entities that could not be written",
    labelnames=["kind"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
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


def record_webhook_outcome(result: str) -> None:
    """
    Record a webhook processing outcome.

    Args:
        result: Processing result - one of:
            - "created": New message stored
            - "duplicate": Message already existed (idempotent)
            - "processed": Non-message event applied
            - "ignored": Unrecognized event acknowledged without side effects
            - "invalid_signature": HMAC validation failed
            - "invalid_json": Body could not be decoded
            - "error": Persistence failed
    """
    webhook_requests_total.labels(result=result).inc()


def record_webhook_event(event_type: str) -> None:
    """Count a classified webhook event by its variant."""
    webhook_events_total.labels(event_type=event_type).inc()


def record_fanout_failure(kind: str) -> None:
    """Count a media, location, contact card or reaction write that failed."""
    webhook_fanout_failures_total.labels(kind=kind).inc()


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
