"""
Observability infrastructure for the rewarded-ad backend.

Provides:
- Structured logging with correlation IDs
- Sentry error tracking
- Prometheus metrics
- Health check utilities
"""

from .logging import get_logger, log_event, correlation_id_context, get_correlation_id
from .metrics import (
    metrics_registry,
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
    ad_callbacks_total,
    ad_callback_duration_seconds,
    wallet_credits_total,
    wallet_spends_total,
    ssv_key_fetch_total,
    ssv_cached_keys,
)

__all__ = [
    "get_logger",
    "log_event",
    "correlation_id_context",
    "get_correlation_id",
    "metrics_registry",
    "http_requests_total",
    "http_request_duration_seconds",
    "http_requests_in_progress",
    "ad_callbacks_total",
    "ad_callback_duration_seconds",
    "wallet_credits_total",
    "wallet_spends_total",
    "ssv_key_fetch_total",
    "ssv_cached_keys",
]
