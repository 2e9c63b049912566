"""
Retry with exponential backoff for storage uploads.
Whole jobs are retried by the queue; this only smooths over blips inside one upload.
"""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx
from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_EXCEPTIONS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.TooManyRequests,
    google_exceptions.BadGateway,
    google_exceptions.GatewayTimeout,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)


def is_transient_error(error: Exception) -> bool:
    """Network failures, throttling and 5xx responses are worth another try."""
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs
) -> T:
    """
    Await `func(*args, **kwargs)`, retrying transient errors.

    The n-th retry waits base_delay * 2 ** (n - 1). Non-transient errors and
    the error of the final attempt propagate unchanged.
    """
    attempts = max_retries + 1
    attempt = 1
    while True:
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if attempt >= attempts or not is_transient_error(e):
                logger.error(f"{operation_name} failed on attempt {attempt}/{attempts}: {type(e).__name__}: {e}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"{operation_name} attempt {attempt}/{attempts} failed ({type(e).__name__}: {e}), "
                f"retrying in {delay}s"
            )
            await sleep(delay)
            attempt += 1
            continue

        if attempt > 1:
            logger.info(f"{operation_name} succeeded on attempt {attempt}/{attempts}")
        return result
