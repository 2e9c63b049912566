"""
Video generation worker - consumes jobs from the video generation queue.
Runs up to `concurrency` jobs as independent asyncio tasks in one process.
"""
import asyncio
import logging
import signal
from typing import Optional, Set

from video_pipeline.core.logging import log_operation_error, set_job_id, set_operation
from video_pipeline.models.queue_schemas import QueueJob
from video_pipeline.services.pipeline.orchestrator import VideoGenerationProcessor
from video_pipeline.services.pipeline.queue import VideoGenerationQueue
from video_pipeline.services.pipeline.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class VideoGenerationWorker:
    """Background worker that claims queued jobs and runs the processor on them."""

    def __init__(
        self,
        queue: VideoGenerationQueue,
        processor: VideoGenerationProcessor,
        concurrency: int = 2,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        poll_interval_seconds: float = 1.0,
        worker_name: str = "video-worker",
        lock_renew_interval_seconds: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter
        self.poll_interval_seconds = poll_interval_seconds
        self.worker_name = worker_name
        self.lock_renew_interval_seconds = (
            lock_renew_interval_seconds
            if lock_renew_interval_seconds is not None
            else queue.options.lock_ttl_seconds / 3
        )
        self.running = False
        self.active_tasks: Set[asyncio.Task] = set()

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGTERM/SIGINT. Call from the main thread."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signal."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.stop()

    def stop(self) -> None:
        self.running = False

    async def _keep_lock(self, job: QueueJob) -> None:
        """Renew the job lock until cancelled or until the lock is lost."""
        while True:
            await asyncio.sleep(self.lock_renew_interval_seconds)
            try:
                if not await self.queue.extend_lock(job.job_id, job.lock_token):
                    logger.warning(f"Lost the lock on job {job.job_id}; its outcome will be ignored")
                    return
            except Exception as e:
                logger.error(f"Failed to renew lock for job {job.job_id}: {e}")

    async def _run_job(self, job: QueueJob) -> None:
        """
        Run one attempt of a job and report the outcome to the queue.

        Any exception fails the attempt; the queue decides on a retry. The job
        lock is renewed in the background while the attempt runs.
        """
        set_job_id(job.job_id)
        set_operation("video_generation")

        async def report_progress(value: float) -> None:
            await self.queue.update_progress(job.job_id, job.lock_token, value)

        logger.info(f"Processing job {job.job_id} (attempt {job.attempts_made}/{job.max_attempts})")
        heartbeat = asyncio.create_task(self._keep_lock(job))
        try:
            result = await self.processor.process(job, report_progress)
        except Exception as e:
            log_operation_error(
                logger=__name__,
                operation="video_generation",
                error=e,
                message=f"Job {job.job_id} attempt {job.attempts_made} failed",
                context={
                    "job_id": job.job_id,
                    "prompt_id": job.prompt_id,
                    "attempts_made": job.attempts_made,
                    "max_attempts": job.max_attempts,
                },
                event="job_attempt_failed",
            )
            await self.queue.fail(job.job_id, job.lock_token, str(e) or type(e).__name__)
            return
        finally:
            heartbeat.cancel()

        if await self.queue.complete(job.job_id, job.lock_token, result.to_dict()):
            logger.info(f"Job {job.job_id} finished: video {result.video_id} (cached={result.cached})")

    async def _reap_finished(self) -> None:
        done_tasks = {t for t in self.active_tasks if t.done()}
        for task in done_tasks:
            try:
                await task
            except Exception as e:
                logger.error(f"Video job task failed: {e}")
        self.active_tasks -= done_tasks

    async def _maintain_queue(self) -> None:
        await self.queue.promote_delayed()
        await self.queue.recover_stalled()

    async def _start_next(self) -> bool:
        """
        Claim and start one job if a slot, a rate-limit slot and a job are available.

        Returns:
            True if a job task was started
        """
        if len(self.active_tasks) >= self.concurrency:
            return False
        if not await self.queue.has_waiting():
            return False
        slot = None
        if self.rate_limiter is not None:
            slot = await self.rate_limiter.acquire_slot()
            if slot is None:
                logger.debug("Job start rate limit reached, waiting for the window to roll")
                return False

        job = await self.queue.claim_next()
        if job is None:
            # another worker took the job between the check and the claim
            if self.rate_limiter is not None:
                await self.rate_limiter.release(slot)
            return False

        task = asyncio.create_task(self._run_job(job))
        self.active_tasks.add(task)
        logger.info(
            f"Started job task for {job.job_id} "
            f"({len(self.active_tasks)}/{self.concurrency} active)"
        )
        return True

    async def run(self) -> None:
        """
        Main worker loop.

        Each iteration reaps finished tasks, promotes delayed jobs, recovers
        stalled ones and starts a new job while under the concurrency limit.
        On stop, waits for active tasks to finish.
        """
        self.running = True
        logger.info(f"Video worker started: {self.worker_name} (concurrency: {self.concurrency})")

        while self.running:
            try:
                await self._reap_finished()
                await self._maintain_queue()
                if await self._start_next():
                    continue
                await asyncio.sleep(self.poll_interval_seconds)
            except Exception as e:
                logger.exception(f"Error in worker loop: {e}")
                await asyncio.sleep(self.poll_interval_seconds)

        if self.active_tasks:
            logger.info(f"Shutting down: waiting for {len(self.active_tasks)} active job(s) to complete...")
            await asyncio.gather(*self.active_tasks, return_exceptions=True)
            self.active_tasks.clear()

        logger.info(f"Video worker {self.worker_name} shut down")

    async def run_until_idle(self) -> None:
        """
        Process jobs until nothing is waiting, delayed or active.
        Used for one-shot runs and tests.
        """
        while True:
            await self._reap_finished()
            await self._maintain_queue()

            while await self._start_next():
                pass

            if self.active_tasks:
                await asyncio.wait(self.active_tasks, return_when=asyncio.FIRST_COMPLETED)
                continue

            counts = await self.queue.get_counts()
            if counts["waiting"] == 0 and counts["delayed"] == 0 and counts["active"] == 0:
                break
            await asyncio.sleep(self.poll_interval_seconds)

        logger.info(f"Video worker {self.worker_name} is idle")
