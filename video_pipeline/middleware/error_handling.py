"""
Error handling middleware that converts exceptions to HTTP responses.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from video_pipeline.core.exceptions import DataIntegrityException, VideoPipelineException
from video_pipeline.core.logging import log_event

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "status_code": status_code},
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Pipeline exceptions keep their status code; anything else is a 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except VideoPipelineException as e:
            log_event(
                level="WARNING" if e.status_code < 500 else "ERROR",
                logger=__name__,
                operation="http_request",
                event="data_integrity_error" if isinstance(e, DataIntegrityException) else "request_failed",
                message=e.message,
                context={"status_code": e.status_code, "path": request.url.path, "method": request.method},
            )
            return error_response(e.status_code, e.message)
        except Exception as e:
            logger.error(f"Unexpected error on {request.method} {request.url.path}: {e}", exc_info=True)
            return error_response(500, "Internal server error")
