"""
Tests for reliability — retry with backoff.
"""

import pytest

from gitanchor.core.errors import ProtocolError, TransientIOError
from gitanchor.core.reliability.backoff import RetryPolicy, retry_call, retry_until


class _Flaky:
    """Fails ``failures`` times with TransientIOError, then returns ``value``."""

    def __init__(self, failures: int, value: str = "done"):
        self.failures = failures
        self.value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientIOError(f"failure {self.calls}")
        return self.value


# ── RetryPolicy ──────────────────────────────────────────────────────


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=100, jitter=0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_delay_capped(self):
        policy = RetryPolicy(base_delay=1, max_delay=3, jitter=0)
        assert policy.delay_for(10) == 3

    def test_jitter_adds_at_most_fraction(self):
        policy = RetryPolicy(base_delay=1, max_delay=10, jitter=0.5)
        for _ in range(50):
            assert 1.0 <= policy.delay_for(1) <= 1.5

    def test_immediate_never_sleeps(self):
        policy = RetryPolicy.immediate(5)
        assert policy.max_attempts == 5
        assert policy.delay_for(3) == 0


# ── retry_call ───────────────────────────────────────────────────────


class TestRetryCall:
    def test_returns_after_transient_failures(self):
        fn = _Flaky(failures=2)
        slept: list[float] = []
        result = retry_call(fn, RetryPolicy(max_attempts=3, jitter=0), sleep=slept.append)
        assert result == "done"
        assert fn.calls == 3
        assert slept == [0.5, 1.0]

    def test_reraises_last_error_when_exhausted(self):
        fn = _Flaky(failures=10)
        with pytest.raises(TransientIOError, match="failure 3"):
            retry_call(fn, RetryPolicy.immediate(3), sleep=lambda _: None)
        assert fn.calls == 3

    def test_other_errors_are_not_retried(self):
        calls = []

        def fn():
            calls.append(1)
            raise ProtocolError("bad input")

        with pytest.raises(ProtocolError):
            retry_call(fn, RetryPolicy.immediate(5), sleep=lambda _: None)
        assert len(calls) == 1

    def test_custom_retry_on(self):
        fn_calls = []

        def fn():
            fn_calls.append(1)
            if len(fn_calls) < 2:
                raise KeyError("x")
            return 42

        assert retry_call(fn, RetryPolicy.immediate(3), retry_on=(KeyError,), sleep=lambda _: None) == 42


# ── retry_until ──────────────────────────────────────────────────────


class TestRetryUntil:
    def test_stops_when_settled(self):
        values = iter(["failed", "failed", "confirmed", "never"])
        result, attempts = retry_until(
            lambda: next(values),
            RetryPolicy.immediate(5),
            should_retry=lambda r: r == "failed",
            sleep=lambda _: None,
        )
        assert (result, attempts) == ("confirmed", 3)

    def test_returns_last_result_when_exhausted(self):
        result, attempts = retry_until(
            lambda: "failed",
            RetryPolicy.immediate(2),
            should_retry=lambda r: True,
            sleep=lambda _: None,
        )
        assert (result, attempts) == ("failed", 2)

    def test_first_result_accepted_without_sleep(self):
        slept: list[float] = []
        _, attempts = retry_until(
            lambda: "ok", RetryPolicy(), should_retry=lambda r: False, sleep=slept.append
        )
        assert attempts == 1
        assert slept == []
