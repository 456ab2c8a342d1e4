"""Prometheus metrics for monitoring."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# HTTP surface metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently being processed",
    ["method", "endpoint"],
)

# Source fetch metrics
source_fetch_total = Counter(
    "source_fetch_total",
    "Total source fetch attempts",
    ["source", "outcome"],  # outcome: ok, network, timeout, parse, pushback, short_circuit, throttled
)

source_fetch_duration_seconds = Histogram(
    "source_fetch_duration_seconds",
    "Source fetch duration",
    ["source"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Circuit breaker metrics
breaker_transitions_total = Counter(
    "breaker_transitions_total",
    "Circuit breaker state transitions",
    ["source", "to_state"],
)

# Refresh cycle metrics
refresh_cycles_total = Counter(
    "refresh_cycles_total",
    "Total refresh cycles",
    ["trigger", "status"],  # status: success, failed, skipped
)

refresh_cycle_duration_seconds = Histogram(
    "refresh_cycle_duration_seconds",
    "Refresh cycle wall time",
    ["trigger"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

refresh_in_progress = Gauge(
    "refresh_in_progress",
    "1 while a refresh cycle is running",
)

# Crowd metrics
crowd_logs_total = Counter(
    "crowd_logs_total",
    "Crowd log lifecycle events",
    ["event"],  # event: submitted, confirmed, pruned, rejected
)
