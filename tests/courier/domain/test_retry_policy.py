"""Tests for the retry/backoff policy."""

import random
from datetime import UTC, datetime, timedelta

import pytest

from courier.notification.retry import RetryPolicy
from courier.settings import EngineSettings


def _policy(**overrides):
    settings = EngineSettings(backoff_jitter_ratio=0.0).with_overrides(**overrides)
    return RetryPolicy(settings)


class TestBackoff:
    @pytest.mark.parametrize(
        "attempt_count,seconds",
        [(1, 30), (2, 60), (3, 120), (4, 240), (5, 480)],
    )
    def test_doubles_from_base(self, attempt_count, seconds):
        assert _policy().backoff(attempt_count) == timedelta(seconds=seconds)

    def test_capped(self):
        assert _policy().backoff(20) == timedelta(seconds=3600)

    def test_huge_attempt_counts_do_not_overflow(self):
        assert _policy().backoff(10_000) == timedelta(seconds=3600)

    def test_zero_attempts_waits_base(self):
        assert _policy().backoff(0) == timedelta(seconds=30)

    def test_jitter_stays_within_ratio(self):
        settings = EngineSettings(backoff_jitter_ratio=0.1)
        policy = RetryPolicy(settings, rng=random.Random(7))
        for _ in range(50):
            delay = policy.backoff(2).total_seconds()
            assert 60 <= delay <= 66

    def test_jitter_spreads_retries(self):
        policy = RetryPolicy(EngineSettings(backoff_jitter_ratio=0.5), rng=random.Random(1))
        delays = {policy.backoff(3) for _ in range(10)}
        assert len(delays) > 1

    def test_next_attempt_at(self):
        now = datetime(2030, 1, 15, 12, 0, tzinfo=UTC)
        assert _policy().next_attempt_at(1, now) == now + timedelta(seconds=30)


class TestShouldRetry:
    def test_retryable_with_attempts_left(self):
        assert _policy(max_retries=3).should_retry(2, retryable=True)

    def test_exhausted(self):
        assert not _policy(max_retries=3).should_retry(3, retryable=True)

    def test_permanent_failure_never_retried(self):
        assert not _policy(max_retries=3).should_retry(1, retryable=False)
