import asyncio

from video_pipeline.core.exceptions import VideoGenerationTimeoutException
from video_pipeline.models.domain import GenerationJob, JobResult, RemoteJobStatus
from video_pipeline.models.queue_schemas import JobStatusValue
from video_pipeline.services.pipeline.orchestrator import VideoGenerationProcessor
from video_pipeline.services.pipeline.queue import QueueOptions, VideoGenerationQueue
from video_pipeline.services.pipeline.rate_limit import SlidingWindowRateLimiter
from video_pipeline.workers.video_worker import VideoGenerationWorker

from fakes import FakeGenerationClient, make_redis, record_store_for, seed_prompt


class NeverFinishingClient(FakeGenerationClient):
    """Remote jobs stay in processing until polling gives up."""

    async def generate(self, prompt, duration=None, aspect_ratio=None, style=None, seed=None):
        self.generated.append(prompt)
        return GenerationJob(job_id=f"remote-{len(self.generated)}", status=RemoteJobStatus.PROCESSING)

    async def poll_until_complete(self, job_id, max_attempts=None, interval_seconds=None):
        raise VideoGenerationTimeoutException(job_id, 60)


class FlakyClient(FakeGenerationClient):
    """Fails the first submission, then behaves."""

    async def generate(self, prompt, duration=None, aspect_ratio=None, style=None, seed=None):
        if not self.generated:
            self.generated.append(prompt)
            return GenerationJob(job_id="remote-flaky", status=RemoteJobStatus.FAILED, error="service overloaded")
        return await super().generate(prompt, duration, aspect_ratio, style, seed)


def build_worker(store, generation_client, asset_store, compiler_factory, attempts=3, concurrency=2):
    queue = VideoGenerationQueue(
        make_redis(),
        name="worker-test",
        options=QueueOptions(attempts=attempts, backoff_delay_seconds=0),
        container_id="test-host",
    )
    processor = VideoGenerationProcessor(
        record_store=store,
        generation_client=generation_client,
        asset_store=asset_store,
        compiler_factory=compiler_factory,
        generation_service="veo-3",
    )
    worker = VideoGenerationWorker(queue, processor, concurrency=concurrency, poll_interval_seconds=0.01)
    return queue, worker


def test_duplicate_enqueue_runs_the_pipeline_once(run, settings, generation_client, asset_store, compiler_factory):
    async def scenario():
        async with record_store_for(settings) as store:
            prompt_id = await seed_prompt(store, "dedup", 2)
            queue, worker = build_worker(store, generation_client, asset_store, compiler_factory)
            first = await queue.enqueue(prompt_id, "u1")
            second = await queue.enqueue(prompt_id, "u1")
            await worker.run_until_idle()
            status = await queue.get_status(prompt_id)
            video = await store.get_latest_compiled_video(prompt_id)
            return first, second, status, video

    first, second, status, video = run(scenario())

    assert first.job_id == second.job_id
    assert generation_client.generated == ["dedup - part 1", "dedup - part 2"]
    assert len(compiler_factory.calls) == 1
    assert status.status == JobStatusValue.COMPLETED
    assert status.progress == 100
    assert status.result["videoId"] == video.id
    assert status.result["cached"] is False


def test_jobs_for_different_prompts_run_concurrently(run, settings, generation_client, asset_store, compiler_factory):
    async def scenario():
        async with record_store_for(settings) as store:
            first = await seed_prompt(store, "first", 1)
            second = await seed_prompt(store, "second", 1)
            queue, worker = build_worker(store, generation_client, asset_store, compiler_factory)
            await queue.enqueue(first, "u1")
            await queue.enqueue(second, "u2")
            await worker.run_until_idle()
            return [(await queue.get_status(p)).status for p in (first, second)]

    assert run(scenario()) == [JobStatusValue.COMPLETED, JobStatusValue.COMPLETED]
    assert sorted(generation_client.generated) == ["first - part 1", "second - part 1"]


def test_polling_timeout_fails_the_job(run, settings, asset_store, compiler_factory):
    async def scenario():
        async with record_store_for(settings) as store:
            prompt_id = await seed_prompt(store, "slow", 1)
            queue, worker = build_worker(store, NeverFinishingClient(), asset_store, compiler_factory, attempts=1)
            await queue.enqueue(prompt_id, "u1")
            await worker.run_until_idle()
            status = await queue.get_status(prompt_id)
            return status, await store.get_latest_compiled_video(prompt_id)

    status, video = run(scenario())

    assert status.status == JobStatusValue.FAILED
    assert "timed out" in status.failed_reason
    assert status.attempts_made == 1
    assert video is None


def test_failed_attempt_is_retried_until_success(run, settings, asset_store, compiler_factory):
    client = FlakyClient()

    async def scenario():
        async with record_store_for(settings) as store:
            prompt_id = await seed_prompt(store, "flaky", 1)
            queue, worker = build_worker(store, client, asset_store, compiler_factory)
            await queue.enqueue(prompt_id, "u1")
            await worker.run_until_idle()
            prompt = await store.get_prompt_for_processing(prompt_id)
            return await queue.get_status(prompt_id), prompt

    status, prompt = run(scenario())

    assert status.status == JobStatusValue.COMPLETED
    assert status.attempts_made == 2
    assert prompt.segments[0].retry_count == 1
    assert client.generated == ["flaky - part 1", "flaky - part 1"]


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingProcessor:
    """Counts how many jobs run at once; each job takes a short while."""

    def __init__(self, queue=None, on_start=None):
        self.queue = queue
        self.on_start = on_start
        self.current = 0
        self.peak = 0
        self.processed = []
        self.lock_ttls = []

    async def process(self, job, report_progress):
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            if self.on_start is not None:
                await self.on_start(job)
            await asyncio.sleep(0.05)
            if self.queue is not None:
                self.lock_ttls.append(await self.queue.redis.ttl(f"{self.queue.name}:lock:{job.job_id}"))
            await report_progress(100)
            self.processed.append(job.prompt_id)
            return JobResult(success=True, video_id=f"video-for-{job.prompt_id}")
        finally:
            self.current -= 1


class BusyElsewhereQueue(VideoGenerationQueue):
    """Reports waiting work that another worker always claims first."""

    async def has_waiting(self) -> bool:
        return True


def make_queue(name="worker-test", queue_class=VideoGenerationQueue, **options):
    return queue_class(
        make_redis(),
        name=name,
        options=QueueOptions(backoff_delay_seconds=0, **options),
        container_id="test-host",
    )


def test_running_jobs_never_exceed_concurrency(run):
    async def scenario():
        queue = make_queue()
        processor = RecordingProcessor()
        worker = VideoGenerationWorker(queue, processor, concurrency=2, poll_interval_seconds=0.01)
        for index in range(5):
            await queue.enqueue(f"p{index}", "u1")
        await worker.run_until_idle()
        statuses = [(await queue.get_status(f"p{index}")).status for index in range(5)]
        return processor, statuses

    processor, statuses = run(scenario())

    assert processor.peak == 2
    assert sorted(processor.processed) == ["p0", "p1", "p2", "p3", "p4"]
    assert statuses == [JobStatusValue.COMPLETED] * 5


def test_job_starts_are_rate_limited(run):
    clock = Clock()

    async def scenario():
        queue = make_queue()
        limiter = SlidingWindowRateLimiter(queue.redis, "worker-test:ratelimit:jobs", 1, 60, clock=clock)
        processor = RecordingProcessor()
        worker = VideoGenerationWorker(queue, processor, concurrency=5, rate_limiter=limiter)
        await queue.enqueue("p1", "u1")
        await queue.enqueue("p2", "u1")

        started = [await worker._start_next(), await worker._start_next()]
        await asyncio.gather(*worker.active_tasks)
        waiting_while_limited = await queue.has_waiting()

        clock.now += 61
        started.append(await worker._start_next())
        await asyncio.gather(*worker.active_tasks)
        return started, waiting_while_limited, processor.processed

    started, waiting_while_limited, processed = run(scenario())

    assert started == [True, False, True]
    assert waiting_while_limited
    assert processed == ["p1", "p2"]


def test_unused_rate_limit_slot_is_released(run):
    async def scenario():
        queue = make_queue(queue_class=BusyElsewhereQueue)
        limiter = SlidingWindowRateLimiter(queue.redis, "worker-test:ratelimit:jobs", 1, 60)
        worker = VideoGenerationWorker(queue, RecordingProcessor(), rate_limiter=limiter)
        started = await worker._start_next()
        return started, await queue.redis.zcard("worker-test:ratelimit:jobs"), await limiter.try_acquire()

    started, slots_in_use, admitted = run(scenario())

    assert started is False
    assert slots_in_use == 0
    assert admitted


def test_lock_is_renewed_while_a_job_runs(run):
    async def scenario():
        queue = make_queue(lock_ttl_seconds=600)

        async def shorten_lock(job):
            await queue.redis.expire(f"worker-test:lock:{job.job_id}", 1)

        processor = RecordingProcessor(queue, on_start=shorten_lock)
        worker = VideoGenerationWorker(queue, processor, lock_renew_interval_seconds=0.01)
        await queue.enqueue("p1", "u1")
        await worker.run_until_idle()
        return processor.lock_ttls, await queue.get_status("p1")

    lock_ttls, status = run(scenario())

    assert lock_ttls[0] > 1
    assert status.status == JobStatusValue.COMPLETED


def test_outcome_of_a_recovered_job_is_ignored(run):
    async def scenario():
        queue = make_queue()
        taken_over = []

        async def lose_lock(job):
            await queue.redis.delete(f"worker-test:lock:{job.job_id}")
            await queue.recover_stalled()
            taken_over.append(await queue.claim_next())

        worker = VideoGenerationWorker(queue, RecordingProcessor(on_start=lose_lock))
        await queue.enqueue("p1", "u1")
        await worker._start_next()
        await asyncio.gather(*worker.active_tasks)
        return taken_over[0], await queue.get_status("p1")

    current, status = run(scenario())

    assert status.status == JobStatusValue.ACTIVE
    assert status.result is None
    assert status.attempts_made == 2
    assert current.attempts_made == 2
