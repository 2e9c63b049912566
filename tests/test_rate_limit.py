from video_pipeline.services.pipeline.rate_limit import SlidingWindowRateLimiter

from fakes import make_redis


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_window_admits_max_calls_then_rolls(run):
    clock = Clock()

    async def scenario():
        limiter = SlidingWindowRateLimiter(make_redis(), "rl:test", max_calls=3, window_seconds=60, clock=clock)
        admitted = [await limiter.try_acquire() for _ in range(4)]
        wait = await limiter.seconds_until_slot()

        clock.now += 30
        still_full = await limiter.try_acquire()

        clock.now += 31
        rolled = await limiter.try_acquire()
        return admitted, wait, still_full, rolled

    admitted, wait, still_full, rolled = run(scenario())

    assert admitted == [True, True, True, False]
    assert wait == 60
    assert still_full is False
    assert rolled is True


def test_acquire_waits_for_a_slot(run):
    clock = Clock()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.now += seconds

    async def scenario():
        limiter = SlidingWindowRateLimiter(make_redis(), "rl:test", max_calls=1, window_seconds=10, clock=clock)
        await limiter.acquire(sleep=fake_sleep)
        await limiter.acquire(sleep=fake_sleep, max_wait_step=None)

    run(scenario())

    assert sleeps == [10]


def test_disabled_limiter_always_admits(run):
    async def scenario():
        limiter = SlidingWindowRateLimiter(make_redis(), "rl:test", max_calls=0, window_seconds=60)
        return [await limiter.try_acquire() for _ in range(20)]

    assert all(run(scenario()))


def test_released_slot_can_be_taken_again(run):
    clock = Clock()

    async def scenario():
        limiter = SlidingWindowRateLimiter(make_redis(), "rl:test", max_calls=1, window_seconds=60, clock=clock)
        slot = await limiter.acquire_slot()
        full = await limiter.acquire_slot()
        await limiter.release(slot)
        return slot, full, await limiter.acquire_slot()

    slot, full, again = run(scenario())

    assert slot
    assert full is None
    assert again
