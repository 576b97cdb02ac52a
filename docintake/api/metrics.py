"""Prometheus metrics for the intake service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Inbound channel events and rate-limited events
- Extraction attempts per provider and outcome
- Confidence verdicts by decision

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Channel metrics
inbound_events_total = Counter(
    "inbound_events_total",
    "Inbound channel events",
    ["channel", "kind"],  # kind: text, interactive, media, other
)

rate_limited_events_total = Counter(
    "rate_limited_events_total",
    "Inbound events refused by the per-identity rate limit",
    ["channel"],
)

document_size_bytes = Histogram(
    "document_size_bytes",
    "Submitted document size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

# Extraction metrics
extraction_attempts_total = Counter(
    "extraction_attempts_total",
    "Extraction provider attempts",
    ["provider", "outcome"],  # accepted, below_floor, unavailable, timeout, rejected, error
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "Duration of one provider attempt in seconds",
    ["provider"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

# Validation metrics
verdicts_total = Counter(
    "verdicts_total",
    "Confidence engine verdicts",
    ["decision"],  # auto_approve, needs_review, reject
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
