"""HTTP middleware: request metrics, correlation IDs and access logging."""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from media_worker.core.logging import clear_correlation_id, set_correlation_id
from media_worker.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

logger = logging.getLogger("media_worker.requests")

# Probes and scrapes are not worth an access line each
QUIET_PATHS = frozenset({"/health", "/metrics"})

_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def route_template(request: Request) -> str:
    """Matched route path (``/status/{media_id}``) to keep label cardinality flat."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and observes latency per route template."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method).inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = route_template(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )
            HTTP_REQUESTS_TOTAL.labels(
                method=method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method).dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopts the caller's ``X-Correlation-ID`` or mints one, and echoes it back."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        supplied = request.headers.get(self.CORRELATION_ID_HEADER, "")
        correlation_id = supplied if _VALID_CORRELATION_ID.match(supplied) else uuid.uuid4().hex

        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line per API call; failures are logged with their traceback."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}

        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("Request failed", extra=fields)
            raise

        if request.url.path not in QUIET_PATHS:
            fields["status_code"] = response.status_code
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(level, "Request completed", extra=fields)
        return response
