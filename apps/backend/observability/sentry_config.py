"""
Sentry error tracking integration.

Only initialized when SENTRY_DSN is set. Signatures and reward tokens are
scrubbed from events before they leave the process.
"""

import os
import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from .logging import get_logger, get_correlation_id

logger = get_logger(__name__)

_SCRUBBED_QUERY_PARAMS = ("signature", "key_id")


def init_sentry() -> bool:
    """
    Initialize Sentry error tracking. Returns True if Sentry was enabled.

    Environment variables:
    - SENTRY_DSN: Sentry Data Source Name (required)
    - SENTRY_ENVIRONMENT: Environment name (falls back to ENVIRONMENT)
    - SENTRY_RELEASE: Release version (e.g., git commit SHA)
    - SENTRY_TRACES_SAMPLE_RATE: Fraction of transactions to trace (0.0-1.0)
    - SENTRY_ENABLE: Set to "false" to disable Sentry
    """
    sentry_dsn = os.getenv("SENTRY_DSN")
    sentry_enable = os.getenv("SENTRY_ENABLE", "true").lower() == "true"

    if not sentry_dsn or not sentry_enable:
        logger.info("Sentry is disabled (SENTRY_DSN not set or SENTRY_ENABLE=false)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT") or os.getenv("ENVIRONMENT", "development")
    release = os.getenv("SENTRY_RELEASE") or "unknown"
    is_production = environment == "production"
    traces_sample_rate = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2" if is_production else "0.0"))

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        release=f"rewarded-ads-backend@{release}",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        before_send=before_send_hook,
    )

    logger.info(
        "Sentry initialized",
        extra={"environment": environment, "release": release, "traces_sample_rate": traces_sample_rate},
    )
    return True


def before_send_hook(event, hint):
    """Drop client disconnects, scrub SSV query params, tag the correlation id."""
    if "exception" in event:
        for exc_value in event["exception"].get("values", []):
            if "client disconnected" in str(exc_value.get("value", "")).lower():
                return None

    request = event.get("request") or {}
    query = request.get("query_string")
    if isinstance(query, str) and query:
        parts = []
        for pair in query.split("&"):
            name = pair.split("=", 1)[0]
            parts.append(f"{name}=[Filtered]" if name in _SCRUBBED_QUERY_PARAMS else pair)
        request["query_string"] = "&".join(parts)

    correlation_id = get_correlation_id()
    if correlation_id:
        event.setdefault("tags", {})["correlation_id"] = correlation_id

    return event


def capture_exception(exc: Exception, **kwargs) -> None:
    """Send an exception to Sentry with tags and extra context."""
    with sentry_sdk.new_scope() as scope:
        correlation_id = get_correlation_id()
        if correlation_id:
            scope.set_tag("correlation_id", correlation_id)
        for key, value in kwargs.get("tags", {}).items():
            scope.set_tag(key, value)
        for key, value in kwargs.get("extra", {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
