"""
Prometheus metrics for the rewarded-ad backend.

HTTP RED metrics (Rate, Errors, Duration) plus reward pipeline counters.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    REGISTRY,
)

# Use the default registry
metrics_registry = REGISTRY

# HTTP Metrics (RED - Rate, Errors, Duration)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=metrics_registry,
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
    registry=metrics_registry,
)

# Completion callbacks
ad_callbacks_total = Counter(
    "ad_callbacks_total",
    "Completion callbacks by outcome",
    ["provider", "outcome"],  # outcome: credited, duplicate, invalid_signature, invalid_payload, error
    registry=metrics_registry,
)

ad_callback_duration_seconds = Histogram(
    "ad_callback_duration_seconds",
    "Time spent verifying and recording a completion callback",
    ["provider"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=metrics_registry,
)

wallet_credits_total = Counter(
    "wallet_credits_total",
    "Reward units granted by accepted callbacks",
    ["reward_item"],
    registry=metrics_registry,
)

wallet_spends_total = Counter(
    "wallet_spends_total",
    "Token spend attempts by outcome",
    ["outcome"],  # spent, insufficient_balance, no_wallet
    registry=metrics_registry,
)

# Provider key document
ssv_key_fetch_total = Counter(
    "ssv_key_fetch_total",
    "Public key document fetches",
    ["status"],  # ok, error
    registry=metrics_registry,
)

ssv_cached_keys = Gauge(
    "ssv_cached_keys",
    "Number of provider public keys currently cached",
    registry=metrics_registry,
)
