"""Prometheus metrics for onboarding runs, detected obligations, and bank API health"""

from typing import Iterable

from prometheus_client import Counter, Histogram

# Onboarding metrics
onboarding_counter = Counter(
    "elly_onboarding_total",
    "Total onboarding runs finished",
    ["outcome"],  # done | failed
)

obligations_detected_counter = Counter(
    "elly_obligations_detected_total",
    "Obligations detected by category",
    ["category"],
)

onboarding_duration_histogram = Histogram(
    "elly_onboarding_duration_seconds",
    "Wall time of one onboarding run",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Bank API metrics
bank_fetch_failures_counter = Counter(
    "bank_fetch_failures_total",
    "Failed bank API calls",
    ["bank", "stage"],  # stage: token | consent | accounts | transactions
)

bank_request_latency_histogram = Histogram(
    "bank_request_latency_seconds",
    "Bank API response time",
    ["stage"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

token_cache_counter = Counter(
    "bank_token_cache_total",
    "Bank token cache lookups",
    ["result"],  # hit | miss
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_onboarding(outcome: str, duration_seconds: float, categories: Iterable[str] = ()) -> None:
    """Record run outcome plus per-category obligation counts"""
    onboarding_counter.labels(outcome=outcome).inc()
    onboarding_duration_histogram.observe(duration_seconds)

    for category in categories:
        obligations_detected_counter.labels(category=category).inc()
