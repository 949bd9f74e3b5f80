"""
Tests for fetch retry with backoff.
"""

import pytest

from lmtap.core.errors import DigestMismatch, FetchError, VerificationFailed
from lmtap.core.reliability.retry import backoff_delay, retry_fetch


class _Flaky:
    def __init__(self, failures: int, exc: Exception | None = None):
        self.failures = failures
        self.exc = exc or FetchError("connection reset")
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return b"payload"


class TestBackoffDelay:
    def test_grows_exponentially(self):
        for attempt, base in [(1, 1.0), (2, 2.0), (3, 4.0)]:
            delay = backoff_delay(attempt)
            assert base <= delay <= base * 1.3

    def test_capped(self):
        assert backoff_delay(20, max_delay=30.0) <= 30.0 * 1.3


class TestRetryFetch:
    def test_no_retry_by_default(self):
        fn = _Flaky(failures=1)
        with pytest.raises(FetchError):
            retry_fetch(fn, sleep=lambda _: None)
        assert fn.calls == 1

    def test_recovers_within_budget(self):
        sleeps: list[float] = []
        fn = _Flaky(failures=2)
        assert retry_fetch(fn, retries=2, base_delay=0.01, sleep=sleeps.append) == b"payload"
        assert fn.calls == 3
        assert len(sleeps) == 2

    def test_gives_up_after_budget(self):
        fn = _Flaky(failures=5)
        with pytest.raises(FetchError):
            retry_fetch(fn, retries=2, sleep=lambda _: None)
        assert fn.calls == 3

    @pytest.mark.parametrize("exc", [
        DigestMismatch("bad digest"),
        VerificationFailed("bad binary"),
        ValueError("bug"),
    ])
    def test_other_errors_not_retried(self, exc):
        fn = _Flaky(failures=1, exc=exc)
        with pytest.raises(type(exc)):
            retry_fetch(fn, retries=3, sleep=lambda _: None)
        assert fn.calls == 1

    def test_non_retryable_fetch_error(self):
        err = FetchError("refusing")
        err.retryable = False
        fn = _Flaky(failures=1, exc=err)
        with pytest.raises(FetchError):
            retry_fetch(fn, retries=3, sleep=lambda _: None)
        assert fn.calls == 1
