"""Tests for the retry helper."""

import pytest

from ingest.exceptions import ExcludedProductError, RetriesExhaustedError
from ingest.retry import EXPONENTIAL, LINEAR, compute_backoff, retry_call


class Flaky:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception = RuntimeError("boom")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestComputeBackoff:

    def test_linear(self):
        assert [compute_backoff(n, 2.0, LINEAR) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    def test_exponential(self):
        assert [compute_backoff(n, 2.0, EXPONENTIAL) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            compute_backoff(1, 1.0, "fibonacci")


class TestRetryCall:

    def test_success_after_failures(self):
        sleeps = []
        func = Flaky(failures=2)

        assert retry_call(func, attempts=3, base_delay=2.0, strategy=LINEAR, sleep=sleeps.append) == "ok"
        assert func.calls == 3
        assert sleeps == [2.0, 4.0]

    def test_exhausted_chains_last_error(self):
        sleeps = []
        func = Flaky(failures=5, error=ValueError("still broken"))

        with pytest.raises(RetriesExhaustedError) as exc:
            retry_call(func, attempts=3, base_delay=1.0, sleep=sleeps.append)

        assert func.calls == 3
        assert exc.value.attempts == 3
        assert isinstance(exc.value.__cause__, ValueError)
        # No sleep after the final attempt
        assert sleeps == [1.0, 2.0]

    def test_give_up_on_propagates_immediately(self):
        func = Flaky(failures=1, error=ExcludedProductError("perfume", keyword="perfume"))

        with pytest.raises(ExcludedProductError):
            retry_call(func, attempts=3, base_delay=1.0, sleep=lambda s: None,
                       give_up_on=(ExcludedProductError,))
        assert func.calls == 1

    def test_on_retry_callback(self):
        seen = []
        retry_call(Flaky(failures=1), attempts=2, base_delay=0, sleep=lambda s: None,
                   on_retry=lambda attempt, error: seen.append(attempt))
        assert seen == [1]

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            retry_call(lambda: None, attempts=0, base_delay=1.0)
