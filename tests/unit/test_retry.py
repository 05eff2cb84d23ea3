import pytest

from autoapply.core.retry import retry, retry_call


class Flaky:
    def __init__(self, failures, exc=RuntimeError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return value


def test_retry_call_backs_off_then_succeeds():
    sleeps = []
    fn = Flaky(2)

    result = retry_call(fn, "ok", max_attempts=3, base_delay=1.0, backoff_factor=2.0, jitter=False, sleep=sleeps.append)

    assert result == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_retry_call_caps_delay():
    sleeps = []
    retry_call(Flaky(3), "ok", max_attempts=4, base_delay=5.0, max_delay=8.0, jitter=False, sleep=sleeps.append)

    assert sleeps == [5.0, 8.0, 8.0]


def test_retry_call_reraises_after_last_attempt():
    fn = Flaky(5)
    with pytest.raises(RuntimeError, match="failure 2"):
        retry_call(fn, "ok", max_attempts=2, jitter=False, sleep=lambda _: None)
    assert fn.calls == 2


def test_should_retry_rejection_propagates_immediately():
    fn = Flaky(1)
    with pytest.raises(RuntimeError):
        retry_call(fn, "ok", should_retry=lambda exc: "context" in str(exc), sleep=lambda _: None)
    assert fn.calls == 1


def test_non_retryable_type_is_not_retried():
    fn = Flaky(1, exc=KeyError)
    with pytest.raises(KeyError):
        retry_call(fn, "ok", retryable=(RuntimeError,), sleep=lambda _: None)
    assert fn.calls == 1


def test_retry_decorator_wraps_function():
    fn = Flaky(1)

    @retry(max_attempts=2, jitter=False, sleep=lambda _: None)
    def call(value):
        return fn(value)

    assert call("ok") == "ok"
    assert fn.calls == 2
