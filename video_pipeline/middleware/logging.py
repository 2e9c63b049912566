"""
Request/response logging middleware.
"""
import time
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from video_pipeline.core.logging import generate_request_id, log_event, set_request_id

# Polled by UIs every few seconds; only errors are logged for these
QUIET_PATH_PREFIXES = ("/api/video/status/", "/health")


def _log_http(level: str, event: str, request: Request, context: Dict[str, Any], exc: Optional[BaseException] = None):
    log_event(
        level=level,
        logger=__name__,
        operation="http_request",
        event=event,
        message=f"{event.replace('_', ' ').capitalize()}: {request.method} {request.url.path}",
        context=context,
        exc_info=exc,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an X-Request-ID and logs enqueue traffic."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        started = time.monotonic()
        quiet = request.url.path.startswith(QUIET_PATH_PREFIXES)

        if not quiet:
            _log_http("INFO", "request_received", request, {
                "method": request.method,
                "path": request.url.path,
                "client_host": request.client.host if request.client else None,
            })

        try:
            response = await call_next(request)
        except Exception as e:
            _log_http("ERROR", "request_error", request, {
                "duration_seconds": round(time.monotonic() - started, 3),
                "error_type": type(e).__name__,
            }, exc=e)
            raise

        if not quiet or response.status_code >= 500:
            _log_http("INFO" if response.status_code < 500 else "ERROR", "response_sent", request, {
                "status_code": response.status_code,
                "duration_seconds": round(time.monotonic() - started, 3),
            })

        response.headers["X-Request-ID"] = request_id
        return response
