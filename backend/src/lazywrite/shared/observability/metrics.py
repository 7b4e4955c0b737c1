"""Prometheus metrics for the book service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 180.0),
)

# ── Provider metrics ─────────────────────────────────────────
PROVIDER_ATTEMPTS_TOTAL = Counter(
    "provider_attempts_total",
    "Outbound provider calls by classified outcome",
    ["provider", "outcome"],
)

PROVIDER_KEYS_BLOCKED_TOTAL = Counter(
    "provider_keys_blocked_total",
    "API keys blocked after a rate-limit signal",
    ["provider"],
)

PROVIDER_ESCALATIONS_TOTAL = Counter(
    "provider_escalations_total",
    "Fallbacks from one provider to the next within a single request",
    ["operation"],
)

GENERATION_CALLS_TOTAL = Counter(
    "generation_calls_total",
    "Logical generation requests by terminal result",
    ["operation", "result"],
)

GENERATION_LATENCY = Histogram(
    "generation_latency_seconds",
    "End-to-end latency of a logical generation request",
    ["operation"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 180.0),
)

# ── Book metrics ─────────────────────────────────────────────
BOOK_IMAGES_FAILED_TOTAL = Counter(
    "book_images_failed_total",
    "Chapter illustrations replaced by a placeholder",
    ["reason"],
)

BOOKS_GENERATED_TOTAL = Counter(
    "books_generated_total",
    "Book PDFs rendered",
)
