import pytest

from field_expenses.core.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, exc=RuntimeError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def test_succeeds_after_transient_failures():
    sleeps = []
    fn = Flaky(2)
    assert RetryPolicy(sleep=sleeps.append).call(fn) == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 1.0]


def test_gives_up_after_max_attempts():
    fn = Flaky(5)
    with pytest.raises(RuntimeError, match="failure 3"):
        RetryPolicy(sleep=lambda s: None).call(fn)
    assert fn.calls == 3


def test_give_up_predicate_stops_immediately():
    fn = Flaky(5, exc=PermissionError)
    policy = RetryPolicy(give_up=lambda e: isinstance(e, PermissionError), sleep=lambda s: None)
    with pytest.raises(PermissionError):
        policy.call(fn)
    assert fn.calls == 1


def test_only_listed_errors_are_retried():
    fn = Flaky(1, exc=KeyError)
    with pytest.raises(KeyError):
        RetryPolicy(retry_on=(ValueError,), sleep=lambda s: None).call(fn)
    assert fn.calls == 1


def test_linear_backoff():
    policy = RetryPolicy(delay=1.0, backoff="linear")
    assert [policy.wait_time(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]
