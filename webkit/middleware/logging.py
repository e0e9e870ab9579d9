"""
webkit - Request Logging Middleware
=====================================

What:  One access-log line per HTTP request.
How:   Measures the time spent below this middleware and logs method, path,
       status, duration, request ID and client address on `webkit.access`.
When:  Runs after RequestIDMiddleware so the request ID is already set.

Log levels by status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Not logged: request bodies, file contents, authorization headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from webkit.middleware.request_id import request_id_var

logger = logging.getLogger("webkit.access")

# Probed every few seconds by orchestrators; not worth a log line each
SKIP_PATHS = {"/health"}


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Writes the access log; the line text and `extra` carry the same fields."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        fields = {
            "request_id": request_id_var.get("") or "-",
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
            "client_ip": request.client.host if request.client else "unknown",
        }
        logger.log(
            level_for_status(response.status_code),
            "%s %s %d %.1fms from %s",
            fields["method"],
            fields["path"],
            fields["status"],
            elapsed_ms,
            fields["client_ip"],
            extra=fields,
        )
        return response
