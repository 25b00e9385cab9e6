"""Retry/backoff policy — when to try again after a retryable failure.

Exponential backoff with a cap plus proportional jitter, so records that
failed at the same instant do not all come back at the same instant.
"""

import random
from datetime import timedelta

from courier.settings import EngineSettings, load_settings


class RetryPolicy:
    def __init__(self, settings: EngineSettings | None = None, rng: random.Random | None = None):
        settings = settings or load_settings()
        self.base_seconds = settings.backoff_base_seconds
        self.cap_seconds = settings.backoff_cap_seconds
        self.jitter_ratio = settings.backoff_jitter_ratio
        self.max_retries = settings.max_retries
        self._rng = rng or random.Random()

    def backoff(self, attempt_count: int) -> timedelta:
        """Delay before the next attempt, given how many attempts were already made.

        The first retry waits ``base``; each further one doubles, up to ``cap``.
        """
        exponent = min(max(attempt_count - 1, 0), 32)
        delay = min(self.base_seconds * (2**exponent), self.cap_seconds)
        jitter = self._rng.uniform(0, delay * self.jitter_ratio) if self.jitter_ratio else 0.0
        return timedelta(seconds=delay + jitter)

    def next_attempt_at(self, attempt_count: int, now):
        return now + self.backoff(attempt_count)

    def should_retry(self, attempt_count: int, retryable: bool) -> bool:
        """Only retryable failures with attempts left are retried; everything else fails."""
        return retryable and attempt_count < self.max_retries
