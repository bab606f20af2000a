"""
WhatevrMe Site — Access Log Middleware
========================================

What:  One log line per request: method, path, status, duration and, for
       reported errors, the correlation token.
How:   Wraps the downstream app, times it, and picks the log level from
       the status code (5xx → ERROR, 4xx → WARNING, otherwise INFO).

Log line:
    GET /index.html 200 3.1ms
    POST /api/note 400 0.8ms error_id=5f0c2a9e13b7d4c1

Request bodies are never logged: note payloads are cipher text.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from whatevrme.error_reporting import ERROR_ID_HEADER

logger = logging.getLogger("whatevrme.access")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Logs each request once the response headers are ready.

    Duration covers routing, template composition and the first rendered
    chunk; the remainder of a streamed page is not included.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        error_id = response.headers.get(ERROR_ID_HEADER)
        client_ip = request.client.host if request.client else "unknown"

        logger.log(
            log_level,
            "%s %s %d %.1fms%s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            f" error_id={error_id}" if error_id else "",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
