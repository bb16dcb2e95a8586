"""
FastAPI middleware for observability.

Binds a correlation ID to each request, records HTTP metrics and logs the
request lifecycle. Provider webhook retries usually carry no request ID, so
one is generated for them.
"""

import re
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import get_logger, correlation_id_context
from .metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
)

logger = get_logger(__name__)

_USER_SEGMENT = re.compile(r"^(/api/ads/(?:balance|history))/[^/]+")
_NUMERIC_SEGMENT = re.compile(r"/\d+")

SLOW_REQUEST_SECONDS = 2.0


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Correlation ID, metrics and request logging for every request."""

    def __init__(self, app: ASGIApp, enable_request_logging: bool = True):
        super().__init__(app)
        self.enable_request_logging = enable_request_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming_id = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")

        with correlation_id_context(incoming_id) as req_id:
            request.state.correlation_id = req_id

            path = self._sanitize_path(request.url.path)
            method = request.method
            quiet = self._is_health_check(request) or not self.enable_request_logging

            http_requests_in_progress.labels(method=method, endpoint=path).inc()
            start_time = time.time()
            status_code = 500

            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers["X-Request-ID"] = req_id
                return response

            except Exception as exc:
                logger.error(
                    "Request failed",
                    extra={
                        "method": method,
                        "path": path,
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                raise

            finally:
                duration = time.time() - start_time
                http_requests_total.labels(method=method, endpoint=path, status=status_code).inc()
                http_request_duration_seconds.labels(method=method, endpoint=path).observe(duration)
                http_requests_in_progress.labels(method=method, endpoint=path).dec()

                if not quiet:
                    logger.info(
                        "Request completed",
                        extra={
                            "method": method,
                            "path": path,
                            "status_code": status_code,
                            "duration_seconds": round(duration, 3),
                        },
                    )
                if duration > SLOW_REQUEST_SECONDS and not self._is_health_check(request):
                    logger.warning(
                        "Slow request detected",
                        extra={"method": method, "path": path, "duration_seconds": round(duration, 3)},
                    )

    def _sanitize_path(self, path: str) -> str:
        """Collapse user ids and numeric ids so metric labels stay bounded."""
        path = _USER_SEGMENT.sub(r"\1/{user_id}", path)
        return _NUMERIC_SEGMENT.sub("/{id}", path)

    def _is_health_check(self, request: Request) -> bool:
        return request.url.path.startswith("/health") or request.url.path.startswith("/metrics")
