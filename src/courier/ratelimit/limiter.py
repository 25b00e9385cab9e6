"""Fixed-window rate limiter over RateLimitWindow counters.

Window boundaries are ``now`` truncated to the window size since the Unix
epoch, so every worker computes the same window for the same instant.
Bursts straddling a window edge can reach twice the cap across the two
windows; that is a known limitation of fixed windows.

A reservation is never rolled back: an attempt that later fails still
consumes quota, so retries cannot bypass the limit.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from courier.ratelimit.window import RateLimitWindow, window_key
from courier.settings import EngineSettings, load_settings
from courier.utils.time import ensure_utc

logger = structlog.get_logger(__name__)

DAY_SECONDS = 86400


@dataclass(frozen=True)
class Reservation:
    allowed: bool
    retry_after: datetime | None = None
    count: int = 0
    limit: int | None = None


def window_bounds(now, window_seconds):
    """Return (start, end) of the fixed window containing ``now``."""
    epoch_seconds = int(ensure_utc(now).timestamp())
    start_seconds = epoch_seconds - (epoch_seconds % int(window_seconds))
    start = datetime.fromtimestamp(start_seconds, tz=UTC)
    return start, start + timedelta(seconds=int(window_seconds))


class RateLimiter:
    """Per (recipient, channel, category) fixed-window limiter.

    Besides the configured rate window, every accepted reservation is also
    tallied in a day-long window, which backs daily frequency caps.
    """

    def __init__(self, settings: EngineSettings | None = None):
        self.settings = settings or load_settings()

    @property
    def _repo(self):
        return current_domain.repository_for(RateLimitWindow)

    def try_reserve(self, recipient_id, channel, category, now) -> Reservation:
        now = ensure_utc(now)
        window_seconds = self.settings.rate_window_seconds
        limit = self.settings.limit_for(channel, category)
        start, end = window_bounds(now, window_seconds)

        window = self._repo.find_or_open(recipient_id, channel, category, window_seconds, start, end, now=now)
        count = self._repo.increment(window, limit=limit, now=now)
        if count is None:
            logger.info(
                "Rate limit reached",
                recipient_id=str(recipient_id),
                channel=channel,
                category=category,
                limit=limit,
                retry_after=end.isoformat(),
            )
            return Reservation(allowed=False, retry_after=end, count=limit, limit=limit)

        if window_seconds != DAY_SECONDS:
            self._tally_day(recipient_id, channel, category, now)

        return Reservation(allowed=True, count=count, limit=limit)

    def current_count(self, recipient_id, channel, category, now, window_seconds=DAY_SECONDS):
        """Return (count, window_end) for the window containing ``now``; no side effects."""
        start, end = window_bounds(now, window_seconds)
        window = self._repo.find(window_key(recipient_id, channel, category, window_seconds, start))
        return (window.count if window else 0), end

    def _tally_day(self, recipient_id, channel, category, now):
        start, end = window_bounds(now, DAY_SECONDS)
        day = self._repo.find_or_open(recipient_id, channel, category, DAY_SECONDS, start, end, now=now)
        self._repo.increment(day, now=now)
