import pytest
from google.api_core import exceptions as google_exceptions

from video_pipeline.utils.retry import is_transient_error, retry_with_backoff


class Flaky:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return value


def recording_sleep():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    return delays, sleep


def test_transient_errors_are_retried_with_doubling_delay(run):
    func = Flaky([google_exceptions.ServiceUnavailable("down"), ConnectionError("reset")])
    delays, sleep = recording_sleep()

    result = run(retry_with_backoff(func, "blob", max_retries=3, base_delay=0.5, sleep=sleep))

    assert result == "blob"
    assert func.calls == 3
    assert delays == [0.5, 1.0]


def test_permanent_error_is_not_retried(run):
    func = Flaky([google_exceptions.Forbidden("no access")])
    delays, sleep = recording_sleep()

    with pytest.raises(google_exceptions.Forbidden):
        run(retry_with_backoff(func, "blob", sleep=sleep))

    assert func.calls == 1
    assert delays == []


def test_last_error_propagates_when_retries_run_out(run):
    func = Flaky([TimeoutError("slow")] * 3)
    delays, sleep = recording_sleep()

    with pytest.raises(TimeoutError):
        run(retry_with_backoff(func, "blob", max_retries=2, base_delay=1.0, sleep=sleep))

    assert func.calls == 3
    assert delays == [1.0, 2.0]


def test_is_transient_error():
    assert is_transient_error(google_exceptions.TooManyRequests("slow down"))
    assert not is_transient_error(ValueError("bad input"))
