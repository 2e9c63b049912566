import asyncio

import pytest

from video_pipeline.core.exceptions import ValidationException
from video_pipeline.models.queue_schemas import JobStatusValue, QueueJobState
from video_pipeline.services.pipeline.queue import (
    QueueOptions,
    VideoGenerationQueue,
    job_id_for,
    prompt_id_from_job_id,
)

from fakes import make_redis


class Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_queue(clock=None, **options) -> VideoGenerationQueue:
    return VideoGenerationQueue(
        make_redis(),
        name="test-queue",
        options=QueueOptions(**options),
        container_id="test-host",
        clock=clock or Clock(),
    )


def test_job_id_is_derived_from_prompt_id():
    assert job_id_for("p1") == "video-p1"
    assert prompt_id_from_job_id("video-p1") == "p1"
    assert prompt_id_from_job_id("p1") == "p1"


def test_enqueue_twice_returns_the_same_job(run):
    async def scenario():
        queue = make_queue()
        first = await queue.enqueue("p1", "u1")
        second = await queue.enqueue("p1", "u2", priority=1)
        counts = await queue.get_counts()
        return first, second, counts

    first, second, counts = run(scenario())

    assert first.job_id == second.job_id == "video-p1"
    assert not first.deduplicated
    assert second.deduplicated
    assert second.user_id == "u1"
    assert second.priority == 10
    assert counts["waiting"] == 1


def test_enqueue_while_active_is_deduplicated(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        claimed = await queue.claim_next()
        again = await queue.enqueue("p1", "u1")
        return claimed, again, await queue.has_waiting()

    claimed, again, has_waiting = run(scenario())

    assert claimed.job_id == "video-p1"
    assert again.deduplicated
    assert again.state == QueueJobState.ACTIVE
    assert not has_waiting


@pytest.mark.parametrize("prompt_id,user_id", [("", "u1"), ("p1", ""), ("  ", "u1"), (None, "u1")])
def test_enqueue_requires_prompt_and_user(run, prompt_id, user_id):
    with pytest.raises(ValidationException):
        run(make_queue().enqueue(prompt_id, user_id))


def test_status_of_unknown_prompt_is_not_found(run):
    status = run(make_queue().get_status("nope"))
    assert status.status == JobStatusValue.NOT_FOUND
    assert status.progress == 0


def test_lower_priority_number_is_claimed_first(run):
    clock = Clock()

    async def scenario():
        queue = make_queue(clock)
        await queue.enqueue("low", "u1", priority=20)
        clock.advance(1)
        await queue.enqueue("high", "u1", priority=1)
        clock.advance(1)
        await queue.enqueue("default", "u1")
        return [(await queue.claim_next()).prompt_id for _ in range(3)]

    assert run(scenario()) == ["high", "default", "low"]


def test_claim_progress_and_complete(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        await queue.update_progress(job.job_id, job.lock_token, 40)
        during = await queue.get_status("p1")
        await queue.complete(job.job_id, job.lock_token, {"success": True, "videoId": "v1", "cached": False})
        after = await queue.get_status("p1")
        lock_exists = await queue.redis.exists("test-queue:lock:video-p1")
        return job, during, after, lock_exists

    job, during, after, lock_exists = run(scenario())

    assert job.attempts_made == 1
    assert job.max_attempts == 3
    assert job.data == {"promptId": "p1", "userId": "u1"}
    assert during.status == JobStatusValue.ACTIVE
    assert during.progress == 40
    assert after.status == JobStatusValue.COMPLETED
    assert after.result == {"success": True, "videoId": "v1", "cached": False}
    assert not lock_exists


def test_failed_attempts_back_off_exponentially_then_fail(run):
    clock = Clock()

    async def scenario():
        queue = make_queue(clock, attempts=3, backoff_delay_seconds=5)
        await queue.enqueue("p1", "u1")
        observed = []

        job = await queue.claim_next()
        observed.append(await queue.fail(job.job_id, job.lock_token, "service overloaded"))
        status = await queue.get_status("p1")
        observed.append((status.status, status.attempts_made, status.failed_reason))

        clock.advance(4.9)
        observed.append(await queue.promote_delayed())
        clock.advance(0.2)
        observed.append(await queue.promote_delayed())

        job = await queue.claim_next()
        observed.append(job.attempts_made)
        await queue.update_progress(job.job_id, job.lock_token, 50)
        observed.append(await queue.fail(job.job_id, job.lock_token, "service overloaded"))

        clock.advance(9.9)
        observed.append(await queue.promote_delayed())
        clock.advance(0.2)
        observed.append(await queue.promote_delayed())

        job = await queue.claim_next()
        observed.append((await queue.get_status("p1")).progress)
        observed.append(await queue.fail(job.job_id, job.lock_token, "still overloaded"))
        status = await queue.get_status("p1")
        observed.append((status.status, status.attempts_made, status.failed_reason))
        return observed

    assert run(scenario()) == [
        QueueJobState.DELAYED,
        (JobStatusValue.WAITING, 1, "service overloaded"),
        0,
        1,
        2,
        QueueJobState.DELAYED,
        0,
        1,
        0,
        QueueJobState.FAILED,
        (JobStatusValue.FAILED, 3, "still overloaded"),
    ]


def test_enqueue_after_failure_requeues_the_job(run):
    async def scenario():
        queue = make_queue(attempts=1)
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        await queue.fail(job.job_id, job.lock_token, "boom")
        handle = await queue.enqueue("p1", "u1")
        status = await queue.get_status("p1")
        return handle, status, await queue.get_counts()

    handle, status, counts = run(scenario())

    assert not handle.deduplicated
    assert status.status == JobStatusValue.WAITING
    assert status.attempts_made == 0
    assert status.failed_reason is None
    assert counts["failed"] == 0
    assert counts["waiting"] == 1


def test_stalled_active_job_is_requeued(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        assert await queue.recover_stalled() == []

        # Worker died: its lock expired
        await queue.redis.delete(f"test-queue:lock:{job.job_id}")
        recovered = await queue.recover_stalled()
        status = await queue.get_status("p1")
        again = await queue.claim_next()
        return recovered, status, again

    recovered, status, again = run(scenario())

    assert recovered == ["video-p1"]
    assert status.status == JobStatusValue.WAITING
    assert again.attempts_made == 2


def test_stalled_job_without_attempts_left_fails(run):
    async def scenario():
        queue = make_queue(attempts=1)
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        await queue.redis.delete(f"test-queue:lock:{job.job_id}")
        await queue.recover_stalled()
        return await queue.get_status("p1")

    status = run(scenario())

    assert status.status == JobStatusValue.FAILED
    assert "stalled" in status.failed_reason


def test_retention_keeps_newest_completed_and_drops_old_failed(run):
    clock = Clock()

    async def scenario():
        queue = make_queue(
            clock,
            attempts=1,
            remove_on_complete_count=2,
            remove_on_complete_age_seconds=3600,
            remove_on_fail_age_seconds=7200,
        )
        for prompt_id in ("a", "b", "c"):
            await queue.enqueue(prompt_id, "u1")
            job = await queue.claim_next()
            await queue.complete(job.job_id, job.lock_token, {"success": True, "videoId": prompt_id})
            clock.advance(10)

        await queue.enqueue("f", "u1")
        job = await queue.claim_next()
        await queue.fail(job.job_id, job.lock_token, "boom")

        statuses = {p: (await queue.get_status(p)).status for p in ("a", "b", "c", "f")}

        clock.advance(3601)
        await queue.trim_retention()
        after_hour = {p: (await queue.get_status(p)).status for p in ("b", "c", "f")}

        clock.advance(3600)
        await queue.trim_retention()
        after_two_hours = (await queue.get_status("f")).status
        return statuses, after_hour, after_two_hours

    statuses, after_hour, after_two_hours = run(scenario())

    assert statuses["a"] == JobStatusValue.NOT_FOUND
    assert statuses["b"] == statuses["c"] == JobStatusValue.COMPLETED
    assert statuses["f"] == JobStatusValue.FAILED
    assert after_hour == {
        "b": JobStatusValue.NOT_FOUND,
        "c": JobStatusValue.NOT_FOUND,
        "f": JobStatusValue.FAILED,
    }
    assert after_two_hours == JobStatusValue.NOT_FOUND


def test_worker_that_lost_its_lock_cannot_report(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        stale = await queue.claim_next()

        # The first worker stalls past its lock; the job is handed out again
        await queue.redis.delete(f"test-queue:lock:{stale.job_id}")
        await queue.recover_stalled()
        current = await queue.claim_next()

        stale_reports = (
            await queue.update_progress(stale.job_id, stale.lock_token, 90),
            await queue.extend_lock(stale.job_id, stale.lock_token),
            await queue.complete(stale.job_id, stale.lock_token, {"success": True, "videoId": "stale"}),
            await queue.fail(stale.job_id, stale.lock_token, "late failure"),
        )
        during = await queue.get_status("p1")
        lock_held = await queue.redis.exists(f"test-queue:lock:{current.job_id}")

        completed = await queue.complete(current.job_id, current.lock_token, {"success": True, "videoId": "v2"})
        after = await queue.get_status("p1")
        return stale, current, stale_reports, during, lock_held, completed, after

    stale, current, stale_reports, during, lock_held, completed, after = run(scenario())

    assert stale.lock_token and current.lock_token
    assert stale.lock_token != current.lock_token
    assert stale_reports == (False, False, False, None)
    assert during.status == JobStatusValue.ACTIVE
    assert during.progress == 0
    assert during.attempts_made == 2
    assert lock_held
    assert completed
    assert after.status == JobStatusValue.COMPLETED
    assert after.result == {"success": True, "videoId": "v2"}


def test_finished_job_ignores_repeated_reports(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        first = await queue.complete(job.job_id, job.lock_token, {"success": True, "videoId": "v1"})
        second = await queue.fail(job.job_id, job.lock_token, "late")
        return first, second, await queue.get_status("p1")

    first, second, status = run(scenario())

    assert first
    assert second is None
    assert status.status == JobStatusValue.COMPLETED


def test_extend_lock_keeps_a_long_job_from_stalling(run):
    async def scenario():
        queue = make_queue(lock_ttl_seconds=600)
        await queue.enqueue("p1", "u1")
        job = await queue.claim_next()
        lock_key = f"test-queue:lock:{job.job_id}"

        await queue.redis.expire(lock_key, 2)
        renewed = await queue.extend_lock(job.job_id, job.lock_token)
        ttl = await queue.redis.ttl(lock_key)
        recovered = await queue.recover_stalled()
        return renewed, ttl, recovered

    renewed, ttl, recovered = run(scenario())

    assert renewed
    assert ttl > 2
    assert recovered == []


def test_concurrent_claims_hand_a_job_to_one_caller(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        claims = await asyncio.gather(*(queue.claim_next() for _ in range(5)))
        return [job for job in claims if job is not None], await queue.get_counts()

    claimed, counts = run(scenario())

    assert len(claimed) == 1
    assert claimed[0].attempts_made == 1
    assert counts["active"] == 1
    assert counts["waiting"] == 0


def test_claim_skips_entries_without_a_job(run):
    async def scenario():
        queue = make_queue()
        await queue.enqueue("p1", "u1")
        await queue.redis.zadd("test-queue:waiting", {"video-ghost": 0})
        job = await queue.claim_next()
        return job, await queue.has_waiting()

    job, has_waiting = run(scenario())

    assert job.job_id == "video-p1"
    assert not has_waiting
