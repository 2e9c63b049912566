"""
Redis-backed job queue for video generation.

Each job lives in a Redis Hash ({queue}:job:{job_id}); its id is derived from
the prompt id, so repeated enqueue calls for one prompt collapse into a single
job. State indexes:

    {queue}:waiting    sorted set, score = priority * 1e13 + enqueued_at_ms
    {queue}:delayed    sorted set, score = ready_at_ms (backoff)
    {queue}:active     set of claimed job ids
    {queue}:lock:{id}  per-job lock with TTL, renewed by its owner
    {queue}:completed  sorted set, score = finished_at_ms (retention)
    {queue}:failed     sorted set, score = finished_at_ms (retention)

Delivery is at-least-once: an active job whose lock expired is handed out
again by recover_stalled(). Every claim carries a lock token (kept in the job
hash); progress, completion and failure are only accepted from the current
token holder, so a worker that lost its lock cannot overwrite the new owner.
"""
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from video_pipeline.core.config import Settings, get_settings
from video_pipeline.core.exceptions import ValidationException
from video_pipeline.models.queue_schemas import (
    JobHandle,
    JobStatus,
    JobStatusValue,
    QueueJob,
    QueueJobState,
)

logger = logging.getLogger(__name__)

JOB_ID_PREFIX = "video-"
PRIORITY_SCORE_FACTOR = 10 ** 13
STALLED_REASON = "job stalled more than allowable limit"


def job_id_for(prompt_id: str) -> str:
    """Deterministic job id for a prompt."""
    return f"{JOB_ID_PREFIX}{prompt_id}"


def prompt_id_from_job_id(job_id: str) -> str:
    """Accept either a job id or a bare prompt id."""
    if job_id.startswith(JOB_ID_PREFIX):
        return job_id[len(JOB_ID_PREFIX):]
    return job_id


@dataclass
class QueueOptions:
    """Retry, retention and locking policy of a queue."""
    attempts: int = 3
    backoff_delay_seconds: float = 5.0
    default_priority: int = 10
    remove_on_complete_age_seconds: int = 24 * 3600
    remove_on_complete_count: int = 100
    remove_on_fail_age_seconds: int = 7 * 24 * 3600
    lock_ttl_seconds: int = 1800

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueOptions":
        return cls(
            attempts=settings.queue_attempts,
            backoff_delay_seconds=settings.queue_backoff_delay_seconds,
            default_priority=settings.queue_default_priority,
            remove_on_complete_age_seconds=settings.queue_remove_on_complete_age_seconds,
            remove_on_complete_count=settings.queue_remove_on_complete_count,
            remove_on_fail_age_seconds=settings.queue_remove_on_fail_age_seconds,
            lock_ttl_seconds=settings.queue_lock_ttl_seconds,
        )

    def backoff_seconds(self, attempts_made: int) -> float:
        """Exponential backoff: delay * 2 ** (attempts_made - 1)."""
        return self.backoff_delay_seconds * (2 ** max(attempts_made - 1, 0))


class VideoGenerationQueue:
    """Durable, deduplicated job queue on top of an async Redis client."""

    def __init__(
        self,
        client: redis.Redis,
        name: str = "video-generation",
        options: Optional[QueueOptions] = None,
        container_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = client
        self.name = name
        self.options = options or QueueOptions()
        self.container_id = container_id or get_settings().container_id
        self._clock = clock

    @classmethod
    def from_settings(cls, client: redis.Redis, settings: Settings) -> "VideoGenerationQueue":
        return cls(
            client,
            name=settings.queue_name,
            options=QueueOptions.from_settings(settings),
            container_id=settings.container_id,
        )

    # Keys

    def _job_key(self, job_id: str) -> str:
        return f"{self.name}:job:{job_id}"

    def _lock_key(self, job_id: str) -> str:
        return f"{self.name}:lock:{job_id}"

    @property
    def _waiting_key(self) -> str:
        return f"{self.name}:waiting"

    @property
    def _delayed_key(self) -> str:
        return f"{self.name}:delayed"

    @property
    def _active_key(self) -> str:
        return f"{self.name}:active"

    @property
    def _completed_key(self) -> str:
        return f"{self.name}:completed"

    @property
    def _failed_key(self) -> str:
        return f"{self.name}:failed"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _waiting_score(self, priority: int, enqueued_at_ms: int) -> int:
        return priority * PRIORITY_SCORE_FACTOR + enqueued_at_ms

    # Producer side

    async def enqueue(self, prompt_id: str, user_id: str, priority: Optional[int] = None) -> JobHandle:
        """
        Queue a generation job for a prompt.

        A waiting, delayed or active job for the same prompt is returned as-is
        (deduplicated). A completed or failed one is reset and queued again.

        Raises:
            ValidationException: prompt_id or user_id missing
        """
        prompt_id = (prompt_id or "").strip()
        user_id = (user_id or "").strip()
        if not prompt_id or not user_id:
            raise ValidationException("promptId and userId are required")

        priority = priority if priority is not None else self.options.default_priority
        job_id = job_id_for(prompt_id)
        key = self._job_key(job_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    existing = await pipe.hgetall(key)
                    state = existing.get("state")

                    if state and not QueueJobState(state).is_terminal:
                        await pipe.reset()
                        logger.info(f"Job {job_id} already {state}, not enqueuing a duplicate")
                        return JobHandle(
                            job_id=job_id,
                            prompt_id=existing.get("prompt_id", prompt_id),
                            user_id=existing.get("user_id", user_id),
                            priority=int(existing.get("priority", priority)),
                            state=QueueJobState(state),
                            deduplicated=True,
                        )

                    now_ms = self._now_ms()
                    pipe.multi()
                    pipe.delete(key)
                    pipe.hset(key, mapping={
                        "job_id": job_id,
                        "prompt_id": prompt_id,
                        "user_id": user_id,
                        "priority": priority,
                        "state": QueueJobState.WAITING.value,
                        "progress": 0,
                        "attempts_made": 0,
                        "max_attempts": self.options.attempts,
                        "data": json.dumps({"promptId": prompt_id, "userId": user_id}),
                        "created_at": now_ms,
                    })
                    pipe.zrem(self._completed_key, job_id)
                    pipe.zrem(self._failed_key, job_id)
                    pipe.zadd(self._waiting_key, {job_id: self._waiting_score(priority, now_ms)})
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug(f"Job {job_id} changed during enqueue, retrying")
                    continue

        if state:
            logger.info(f"Re-queued {state} job {job_id} (priority={priority})")
        else:
            logger.info(f"Queued job {job_id} for user {user_id} (priority={priority})")

        return JobHandle(
            job_id=job_id,
            prompt_id=prompt_id,
            user_id=user_id,
            priority=priority,
            state=QueueJobState.WAITING,
        )

    async def get_status(self, prompt_id: str) -> JobStatus:
        """Status of the job for a prompt; delayed retries report 'waiting'."""
        job = await self.redis.hgetall(self._job_key(job_id_for(prompt_id)))
        if not job or "state" not in job:
            return JobStatus(status=JobStatusValue.NOT_FOUND)

        state = QueueJobState(job["state"])
        status = JobStatusValue.WAITING if state == QueueJobState.DELAYED else JobStatusValue(state.value)

        return JobStatus(
            status=status,
            progress=float(job.get("progress") or 0),
            result=json.loads(job["result"]) if job.get("result") else None,
            failed_reason=job.get("failed_reason") or None,
            attempts_made=int(job.get("attempts_made") or 0),
            data=json.loads(job["data"]) if job.get("data") else None,
        )

    async def has_waiting(self) -> bool:
        return await self.redis.zcard(self._waiting_key) > 0

    async def get_counts(self) -> Dict[str, int]:
        """Number of jobs per state."""
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.zcard(self._waiting_key)
            pipe.zcard(self._delayed_key)
            pipe.scard(self._active_key)
            pipe.zcard(self._completed_key)
            pipe.zcard(self._failed_key)
            waiting, delayed, active, completed, failed = await pipe.execute()
        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    # Worker side

    def _lock_value(self, token: str) -> str:
        return json.dumps({
            "token": token,
            "locked_at": self._clock(),
            "container_id": self.container_id,
        })

    async def claim_next(self) -> Optional[QueueJob]:
        """
        Take the highest-priority waiting job and mark it active.

        The head of the waiting set and the job hash are watched, so a job is
        handed to exactly one caller. Each claim gets a fresh lock token; only
        the holder of that token may report progress or an outcome.

        Returns:
            The claimed job, or None when nothing is waiting
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(self._waiting_key)
                    head = await pipe.zrange(self._waiting_key, 0, 0)
                    if not head:
                        await pipe.reset()
                        return None

                    job_id = head[0]
                    key = self._job_key(job_id)
                    await pipe.watch(key)
                    state = await pipe.hget(key, "state")

                    pipe.multi()
                    pipe.zrem(self._waiting_key, job_id)
                    if state != QueueJobState.WAITING.value:
                        await pipe.execute()
                        logger.warning(f"Dropping queue entry for job {job_id} in state {state}")
                        continue

                    token = uuid.uuid4().hex
                    pipe.hset(key, mapping={
                        "state": QueueJobState.ACTIVE.value,
                        "progress": 0,
                        "processed_at": self._now_ms(),
                        "lock_token": token,
                    })
                    pipe.hincrby(key, "attempts_made", 1)
                    pipe.sadd(self._active_key, job_id)
                    pipe.set(self._lock_key(job_id), self._lock_value(token), ex=self.options.lock_ttl_seconds)
                    pipe.hgetall(key)
                    results = await pipe.execute()
                    break
                except WatchError:
                    logger.debug("Waiting set changed during claim, retrying")
                    continue

        job = results[-1]
        logger.info(f"Claimed job {job_id} (attempt {job['attempts_made']}/{job['max_attempts']})")
        return QueueJob(
            job_id=job_id,
            prompt_id=job["prompt_id"],
            user_id=job["user_id"],
            priority=int(job["priority"]),
            attempts_made=int(job["attempts_made"]),
            max_attempts=int(job["max_attempts"]),
            data=json.loads(job["data"]) if job.get("data") else {},
            lock_token=token,
        )

    async def _as_owner(
        self,
        job_id: str,
        token: str,
        stage: Callable[[Any, Dict[str, str]], None],
        action: str,
    ) -> Optional[Dict[str, str]]:
        """
        Run the commands staged by stage(pipe, job) if token still owns the job.

        The job must be active under the same lock token. A recovery or a new
        claim rewrites the job hash, which aborts the transaction and re-checks.

        Returns:
            The job hash read before the write, or None if the caller lost the job
        """
        key = self._job_key(job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    job = await pipe.hgetall(key)
                    if not token or job.get("state") != QueueJobState.ACTIVE.value or job.get("lock_token") != token:
                        await pipe.reset()
                        logger.warning(
                            f"Ignoring {action} for job {job_id}: lock no longer held "
                            f"(state={job.get('state')})"
                        )
                        return None
                    pipe.multi()
                    stage(pipe, job)
                    await pipe.execute()
                    return job
                except WatchError:
                    logger.debug(f"Job {job_id} changed during {action}, re-checking ownership")
                    continue

    async def extend_lock(self, job_id: str, token: str) -> bool:
        """Renew the job lock for another TTL. False if the lock was lost."""
        def stage(pipe, job):
            pipe.set(self._lock_key(job_id), self._lock_value(token), ex=self.options.lock_ttl_seconds)

        return await self._as_owner(job_id, token, stage, "lock renewal") is not None

    async def update_progress(self, job_id: str, token: str, progress: float) -> bool:
        """Store progress (0-100) and renew the job lock. False if the lock was lost."""
        def stage(pipe, job):
            pipe.hset(self._job_key(job_id), "progress", progress)
            pipe.set(self._lock_key(job_id), self._lock_value(token), ex=self.options.lock_ttl_seconds)

        if await self._as_owner(job_id, token, stage, "progress update") is None:
            return False
        logger.debug(f"Job {job_id} progress: {progress}")
        return True

    async def complete(self, job_id: str, token: str, result: Dict[str, Any]) -> bool:
        """
        Move an active job to completed and apply retention.

        Returns:
            False if the caller no longer held the job; nothing is written then
        """
        now_ms = self._now_ms()

        def stage(pipe, job):
            pipe.hset(self._job_key(job_id), mapping={
                "state": QueueJobState.COMPLETED.value,
                "result": json.dumps(result),
                "failed_reason": "",
                "finished_at": now_ms,
                "lock_token": "",
            })
            pipe.srem(self._active_key, job_id)
            pipe.delete(self._lock_key(job_id))
            pipe.zadd(self._completed_key, {job_id: now_ms})

        if await self._as_owner(job_id, token, stage, "completion") is None:
            return False

        logger.info(f"Job {job_id} completed")
        await self.trim_retention()
        return True

    def _attempts(self, job: Dict[str, str]):
        return int(job.get("attempts_made") or 0), int(job.get("max_attempts") or self.options.attempts)

    async def fail(self, job_id: str, token: str, reason: str) -> Optional[QueueJobState]:
        """
        Record a failed attempt.

        The job is delayed for a retry while attempts remain, otherwise it
        moves to failed.

        Returns:
            QueueJobState.DELAYED or QueueJobState.FAILED, or None if the
            caller no longer held the job
        """
        now_ms = self._now_ms()

        def stage(pipe, job):
            attempts_made, max_attempts = self._attempts(job)
            if attempts_made < max_attempts:
                delay = self.options.backoff_seconds(attempts_made)
                pipe.hset(self._job_key(job_id), mapping={
                    "state": QueueJobState.DELAYED.value,
                    "failed_reason": reason,
                    "lock_token": "",
                })
                pipe.srem(self._active_key, job_id)
                pipe.delete(self._lock_key(job_id))
                pipe.zadd(self._delayed_key, {job_id: now_ms + int(delay * 1000)})
            else:
                self._stage_failed(pipe, job_id, reason, now_ms)

        job = await self._as_owner(job_id, token, stage, "failure report")
        if job is None:
            return None

        attempts_made, max_attempts = self._attempts(job)
        if attempts_made < max_attempts:
            delay = self.options.backoff_seconds(attempts_made)
            logger.warning(
                f"Job {job_id} attempt {attempts_made}/{max_attempts} failed, retrying in {delay}s: {reason}"
            )
            return QueueJobState.DELAYED

        logger.error(f"Job {job_id} failed after {attempts_made} attempt(s): {reason}")
        await self.trim_retention()
        return QueueJobState.FAILED

    def _stage_failed(self, pipe, job_id: str, reason: str, now_ms: int) -> None:
        pipe.hset(self._job_key(job_id), mapping={
            "state": QueueJobState.FAILED.value,
            "failed_reason": reason,
            "finished_at": now_ms,
            "lock_token": "",
        })
        pipe.srem(self._active_key, job_id)
        pipe.delete(self._lock_key(job_id))
        pipe.zadd(self._failed_key, {job_id: now_ms})

    def _stage_waiting(self, pipe, job_id: str, priority: int) -> None:
        pipe.hset(self._job_key(job_id), mapping={
            "state": QueueJobState.WAITING.value,
            "lock_token": "",
        })
        pipe.zadd(self._waiting_key, {job_id: self._waiting_score(priority, self._now_ms())})

    async def _requeue(self, job_id: str) -> None:
        priority = await self.redis.hget(self._job_key(job_id), "priority")
        priority = int(priority or self.options.default_priority)
        async with self.redis.pipeline(transaction=True) as pipe:
            self._stage_waiting(pipe, job_id, priority)
            await pipe.execute()

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to waiting."""
        due = await self.redis.zrangebyscore(self._delayed_key, 0, self._now_ms())
        promoted = 0
        for job_id in due:
            # zrem succeeds for exactly one caller
            if await self.redis.zrem(self._delayed_key, job_id):
                await self._requeue(job_id)
                promoted += 1
        if promoted:
            logger.info(f"Promoted {promoted} delayed job(s)")
        return promoted

    async def recover_stalled(self) -> List[str]:
        """
        Re-queue active jobs whose lock expired (worker died mid-job).

        A stalled job that already used all its attempts is failed instead.
        Recovery clears the lock token, so the stalled worker's later reports
        are ignored.

        Returns:
            Ids of recovered jobs
        """
        recovered = []
        for job_id in await self.redis.smembers(self._active_key):
            key = self._job_key(job_id)
            lock_key = self._lock_key(job_id)
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(lock_key, key)
                        if await pipe.exists(lock_key):
                            await pipe.reset()
                            outcome = None
                            break
                        job = await pipe.hgetall(key)
                        attempts_made, max_attempts = self._attempts(job)
                        pipe.multi()
                        if job.get("state") != QueueJobState.ACTIVE.value:
                            pipe.srem(self._active_key, job_id)
                            outcome = None
                        elif attempts_made >= max_attempts:
                            self._stage_failed(pipe, job_id, STALLED_REASON, self._now_ms())
                            outcome = QueueJobState.FAILED
                        else:
                            pipe.srem(self._active_key, job_id)
                            self._stage_waiting(pipe, job_id, int(job.get("priority") or self.options.default_priority))
                            outcome = QueueJobState.WAITING
                        await pipe.execute()
                        break
                    except WatchError:
                        continue

            if outcome == QueueJobState.FAILED:
                logger.error(f"Stalled job {job_id} has no attempts left, marked failed")
            elif outcome == QueueJobState.WAITING:
                logger.warning(f"Recovered stalled job {job_id}")
            if outcome is not None:
                recovered.append(job_id)
        return recovered

    async def trim_retention(self) -> int:
        """
        Remove finished jobs past retention: completed ones older than the
        age limit or beyond the newest N, failed ones older than their age limit.

        Returns:
            Number of jobs removed
        """
        now_ms = self._now_ms()
        completed_cutoff = now_ms - self.options.remove_on_complete_age_seconds * 1000
        failed_cutoff = now_ms - self.options.remove_on_fail_age_seconds * 1000

        expired_completed = set(await self.redis.zrangebyscore(self._completed_key, 0, completed_cutoff))
        total_completed = await self.redis.zcard(self._completed_key)
        overflow = total_completed - self.options.remove_on_complete_count
        if overflow > 0:
            expired_completed.update(await self.redis.zrange(self._completed_key, 0, overflow - 1))

        expired_failed = await self.redis.zrangebyscore(self._failed_key, 0, failed_cutoff)

        removed = 0
        for index_key, job_ids in ((self._completed_key, expired_completed), (self._failed_key, expired_failed)):
            for job_id in job_ids:
                # A job re-queued meanwhile is no longer in the index
                if await self.redis.zrem(index_key, job_id):
                    await self.redis.delete(self._job_key(job_id))
                    removed += 1

        if removed:
            logger.info(f"Removed {removed} finished job(s) past retention")
        return removed
