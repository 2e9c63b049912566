"""
Client for the third-party text-to-video generation service.

The service has a submit/poll contract:
    POST {base_url}/generate      -> {jobId, status, ...}
    GET  {base_url}/jobs/{jobId}  -> {jobId, status, videoUrl?, thumbnailUrl?, error?}

Remote job states: queued -> processing -> completed | failed. Running out
of poll attempts is a separate, client-side terminal state (timeout).
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Dict, Any

import httpx

from video_pipeline.core.config import Settings
from video_pipeline.core.exceptions import (
    VideoGenerationFailedException,
    VideoGenerationServiceException,
    VideoGenerationTimeoutException,
)
from video_pipeline.models.domain import GenerationJob, RemoteJobStatus
from video_pipeline.services.pipeline.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class VideoGenerationClient:
    """Async client for submitting clip generation jobs and polling them."""

    SERVICE_NAME = "video-generation"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        max_duration_seconds: int = 5,
        default_aspect_ratio: str = "16:9",
        timeout: float = 30.0,
        poll_max_attempts: int = 60,
        poll_interval_seconds: float = 5.0,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Bearer token for the service
            base_url: Service root URL
            max_duration_seconds: Hard cap the service enforces per clip
            default_aspect_ratio: Used when a request does not name one
            timeout: Per-request HTTP timeout in seconds
            poll_max_attempts: Default status checks before timing out
            poll_interval_seconds: Default wait between status checks
            rate_limiter: Optional limiter applied to new submissions
            sleep: Awaitable sleep used between polls (injected in tests)
            transport: Optional httpx transport (injected in tests)
        """
        if not api_key or not base_url:
            raise ValueError("Video generation API credentials not configured")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_duration_seconds = max_duration_seconds
        self.default_aspect_ratio = default_aspect_ratio
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self.rate_limiter = rate_limiter
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> "VideoGenerationClient":
        return cls(
            api_key=settings.video_api_key,
            base_url=settings.video_api_url,
            max_duration_seconds=settings.video_api_max_duration_seconds,
            default_aspect_ratio=settings.video_api_default_aspect_ratio,
            timeout=settings.video_api_timeout_seconds,
            poll_max_attempts=settings.video_poll_max_attempts,
            poll_interval_seconds=settings.video_poll_interval_seconds,
            rate_limiter=rate_limiter,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def cap_duration(self, duration: Optional[float]) -> float:
        """Clamp a requested duration to the service's hard cap."""
        if not duration or duration <= 0:
            return self.max_duration_seconds
        return min(duration, self.max_duration_seconds)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        start_time = time.time()
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{self.SERVICE_NAME} transport error on {method} {path}: {e}")
            raise VideoGenerationServiceException(self.SERVICE_NAME, f"{type(e).__name__}: {e}") from e

        duration = time.time() - start_time
        logger.info(
            f"{self.SERVICE_NAME} API response: {method} {path} "
            f"status={response.status_code}, duration={duration:.2f}s"
        )

        if response.status_code >= 400:
            try:
                detail = response.json().get("message") or response.reason_phrase
            except ValueError:
                detail = response.text[:200] or response.reason_phrase
            raise VideoGenerationServiceException(
                self.SERVICE_NAME, f"HTTP {response.status_code}: {detail}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise VideoGenerationServiceException(self.SERVICE_NAME, f"Invalid JSON response: {e}") from e

    async def generate(
        self,
        prompt: str,
        duration: Optional[float] = None,
        aspect_ratio: Optional[str] = None,
        style: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> GenerationJob:
        """
        Submit a generation request for one clip.

        The duration is always clamped to the service cap, whatever the caller asks for.

        Returns:
            GenerationJob with the remote job id and initial status
        """
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(sleep=self._sleep)

        payload = {
            "prompt": prompt,
            "duration": self.cap_duration(duration),
            "aspect_ratio": aspect_ratio or self.default_aspect_ratio,
            "style": style,
            "seed": seed,
        }
        data = await self._request("POST", "/generate", payload)
        job = GenerationJob.from_dict(data)
        logger.info(f"Submitted generation job {job.job_id} (duration={payload['duration']}s)")
        return job

    async def check_status(self, job_id: str) -> GenerationJob:
        """Fetch the current state of a remote job."""
        data = await self._request("GET", f"/jobs/{job_id}")
        if isinstance(data, dict):
            data.setdefault("jobId", job_id)
        return GenerationJob.from_dict(data)

    async def poll_until_complete(
        self,
        job_id: str,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ) -> GenerationJob:
        """
        Check a job's status at a fixed interval until it reaches a terminal state.

        Raises:
            VideoGenerationFailedException: the service reported 'failed'
            VideoGenerationTimeoutException: max_attempts checks without a terminal state
        """
        max_attempts = max_attempts if max_attempts is not None else self.poll_max_attempts
        interval = interval_seconds if interval_seconds is not None else self.poll_interval_seconds

        for attempt in range(max_attempts):
            job = await self.check_status(job_id)

            if job.status == RemoteJobStatus.COMPLETED:
                logger.info(f"Generation job {job_id} completed after {attempt + 1} check(s)")
                return job

            if job.status == RemoteJobStatus.FAILED:
                logger.error(f"Generation job {job_id} failed: {job.error}")
                raise VideoGenerationFailedException(job_id, job.error or "Video generation failed")

            logger.debug(f"Generation job {job_id} is {job.status.value} (check {attempt + 1}/{max_attempts})")
            await self._sleep(interval)

        raise VideoGenerationTimeoutException(job_id, max_attempts)
