"""
JobSystem - owns every long-lived handle of the video generation pipeline.

One object holds the Redis client, the queue, the record store and (for
worker processes) the generation client, asset store and worker. Whatever
boots the process constructs it and passes it on; nothing is kept in
module-level state.

    system = JobSystem.from_settings(settings, with_worker=True)
    await system.start()
    ...
    await system.stop()
"""
import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine

from video_pipeline.core.config import Settings, get_settings
from video_pipeline.core.redis import close_redis_client, create_async_redis_client, health_check
from video_pipeline.database.session import build_engine, build_session_factory
from video_pipeline.models.queue_schemas import JobHandle, JobStatus
from video_pipeline.services.ai.video_generation_client import VideoGenerationClient
from video_pipeline.services.pipeline.orchestrator import VideoGenerationProcessor
from video_pipeline.services.pipeline.queue import VideoGenerationQueue
from video_pipeline.services.pipeline.rate_limit import SlidingWindowRateLimiter
from video_pipeline.services.pipeline.upload_service import GCSAssetStore
from video_pipeline.services.record_store import VideoRecordStore
from video_pipeline.services.temp_file_manager import cleanup_old_files
from video_pipeline.services.video_compiler import VideoCompiler
from video_pipeline.workers.video_worker import VideoGenerationWorker

logger = logging.getLogger(__name__)


class JobSystem:
    """Queue, record store and worker wired together for one process."""

    def __init__(
        self,
        redis_client: redis.Redis,
        queue: VideoGenerationQueue,
        record_store: VideoRecordStore,
        worker: Optional[VideoGenerationWorker] = None,
        generation_client: Optional[VideoGenerationClient] = None,
        engine: Optional[AsyncEngine] = None,
        settings: Optional[Settings] = None,
    ):
        self.redis = redis_client
        self.queue = queue
        self.record_store = record_store
        self.worker = worker
        self.generation_client = generation_client
        self.engine = engine
        self.settings = settings or get_settings()
        self._worker_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, with_worker: bool = False) -> "JobSystem":
        """
        Build the production object graph.

        Args:
            settings: Application settings (defaults to the global settings)
            with_worker: Also build the generation client, asset store and worker
        """
        settings = settings or get_settings()
        redis_client = create_async_redis_client(settings)
        engine = build_engine(settings)
        record_store = VideoRecordStore(build_session_factory(engine))
        queue = VideoGenerationQueue.from_settings(redis_client, settings)

        worker = None
        generation_client = None
        if with_worker:
            segment_limiter = SlidingWindowRateLimiter(
                redis_client,
                key=f"{settings.queue_name}:ratelimit:segments",
                max_calls=settings.segment_rate_limit_max,
                window_seconds=settings.segment_rate_limit_window_seconds,
            )
            generation_client = VideoGenerationClient.from_settings(settings, rate_limiter=segment_limiter)
            processor = VideoGenerationProcessor(
                record_store=record_store,
                generation_client=generation_client,
                asset_store=GCSAssetStore(settings),
                compiler_factory=lambda identifier: VideoCompiler.from_settings(settings, identifier),
                generation_service=settings.video_generation_service,
                clip_folder=f"{settings.gcs_video_folder}/clips",
                video_folder=settings.gcs_video_folder,
            )
            worker = VideoGenerationWorker(
                queue,
                processor,
                concurrency=settings.worker_concurrency,
                rate_limiter=SlidingWindowRateLimiter(
                    redis_client,
                    key=f"{settings.queue_name}:ratelimit:jobs",
                    max_calls=settings.worker_rate_limit_max,
                    window_seconds=settings.worker_rate_limit_window_seconds,
                ),
                poll_interval_seconds=settings.queue_poll_interval_seconds,
                worker_name=f"video-worker-{settings.container_id}",
            )

        return cls(
            redis_client,
            queue,
            record_store,
            worker=worker,
            generation_client=generation_client,
            engine=engine,
            settings=settings,
        )

    async def enqueue(self, prompt_id: str, user_id: str, priority: Optional[int] = None) -> JobHandle:
        return await self.queue.enqueue(prompt_id, user_id, priority)

    async def get_status(self, prompt_id: str) -> JobStatus:
        return await self.queue.get_status(prompt_id)

    async def health(self) -> bool:
        return await health_check(self.redis)

    def _prepare_worker(self) -> VideoGenerationWorker:
        if self.worker is None:
            raise RuntimeError("JobSystem was built without a worker")
        try:
            cleanup_old_files(temp_base_dir=self.settings.temp_base_dir)
        except Exception as e:
            logger.warning(f"Temp cleanup on worker start failed (non-fatal): {e}")
        return self.worker

    async def start(self) -> None:
        """Run the worker loop as a background task (when a worker is configured)."""
        if self.worker is None or self._worker_task is not None:
            return
        worker = self._prepare_worker()
        self._worker_task = asyncio.create_task(worker.run())
        logger.info("Video worker task started")

    async def run_worker(self) -> None:
        """Run the worker loop in the foreground until it is stopped."""
        worker = self._prepare_worker()
        await worker.run()

    async def stop(self) -> None:
        """Stop the worker (waiting for active jobs) and release every handle."""
        if self.worker is not None:
            self.worker.stop()
        if self._worker_task is not None:
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None

        if self.generation_client is not None:
            await self.generation_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        await close_redis_client(self.redis)
        logger.info("Job system stopped")
