"""Tests for per-stage retry with exponential backoff."""

from __future__ import annotations

import pytest

from terrascan.core.exceptions import PipelineError, StageError
from terrascan.core.retry import backoff_seconds, run_with_retry


class _Flaky:
    def __init__(self, failures: int, *, retryable: bool = True) -> None:
        self.failures = failures
        self.retryable = retryable
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise StageError("download", "connection reset", retryable=self.retryable)
        return "ok"


class TestBackoff:
    def test_exponential(self) -> None:
        assert [backoff_seconds(n, base=2.0) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped(self) -> None:
        assert backoff_seconds(10, base=2.0, cap=30.0) == 30.0

    def test_zero_attempt(self) -> None:
        assert backoff_seconds(0) == 0.0


class TestRunWithRetry:
    def test_first_attempt_success(self) -> None:
        sleeps: list[float] = []
        result, retries = run_with_retry(_Flaky(0), label="op", sleep=sleeps.append)
        assert (result, retries) == ("ok", 0)
        assert sleeps == []

    def test_recovers_after_transient_failures(self) -> None:
        sleeps: list[float] = []
        op = _Flaky(2)
        result, retries = run_with_retry(
            op, label="op", max_retries=3, retry_base_seconds=1.0, sleep=sleeps.append
        )
        assert result == "ok"
        assert retries == 2
        assert sleeps == [1.0, 2.0]

    def test_exhausted_retries_become_terminal(self) -> None:
        op = _Flaky(10)
        with pytest.raises(StageError) as exc_info:
            run_with_retry(op, label="op", max_retries=2, sleep=lambda _s: None)
        assert op.calls == 3
        assert exc_info.value.retryable is False

    def test_non_retryable_is_not_retried(self) -> None:
        op = _Flaky(1, retryable=False)
        with pytest.raises(StageError):
            run_with_retry(op, label="op", max_retries=5, sleep=lambda _s: None)
        assert op.calls == 1

    def test_foreign_exceptions_propagate(self) -> None:
        def boom() -> None:
            raise KeyError("x")

        with pytest.raises(KeyError):
            run_with_retry(boom, label="op", sleep=lambda _s: None)

    def test_zero_retries(self) -> None:
        with pytest.raises(PipelineError):
            run_with_retry(_Flaky(1), label="op", max_retries=0, sleep=lambda _s: None)
