"""RateLimitWindow aggregate — a fixed-window send counter.

One row per (recipient, channel, category, window size, window start),
created lazily on first use and never deleted by the engine: old windows
simply stop being read once they end. Counters only move through
`RateLimitWindowRepository.increment`, which saves against the aggregate
version and re-reads when another worker got there first.
"""

from datetime import UTC, datetime

from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer, String

from courier.domain import courier
from courier.notification.notification import Category, Channel
from courier.utils.time import ensure_utc

# Bounded versioned-save retries before contention is reported
MAX_INCREMENT_ATTEMPTS = 10


class RateLimitContention(RuntimeError):
    """The window counter kept changing under us; treated as an infrastructure fault."""


def window_key(recipient_id, channel, category, window_seconds, window_start):
    return f"{recipient_id}|{channel}|{category}|{int(window_seconds)}|{int(window_start.timestamp())}"


@courier.aggregate
class RateLimitWindow:
    key: String(identifier=True, max_length=400)

    recipient_id: Identifier(required=True)
    channel: String(choices=Channel, required=True)
    category: String(choices=Category, required=True)

    window_seconds: Integer(required=True, min_value=1)
    window_start: DateTime(required=True)
    window_end: DateTime(required=True)
    count: Integer(default=0, min_value=0)

    created_at: DateTime()
    updated_at: DateTime()

    @classmethod
    def open(cls, recipient_id, channel, category, window_seconds, window_start, window_end, now=None):
        now = ensure_utc(now) or datetime.now(UTC)
        return cls(
            key=window_key(recipient_id, channel, category, window_seconds, window_start),
            recipient_id=recipient_id,
            channel=channel,
            category=category,
            window_seconds=window_seconds,
            window_start=window_start,
            window_end=window_end,
            count=0,
            created_at=now,
            updated_at=now,
        )


@courier.repository(part_of=RateLimitWindow)
class RateLimitWindowRepository:
    def find(self, key):
        try:
            return self.get(key)
        except ObjectNotFoundError:
            return None

    def find_or_open(self, recipient_id, channel, category, window_seconds, window_start, window_end, now=None):
        key = window_key(recipient_id, channel, category, window_seconds, window_start)
        window = self.find(key)
        if window is None:
            window = RateLimitWindow.open(
                recipient_id, channel, category, window_seconds, window_start, window_end, now=now
            )
            self.add(window)
        return window

    def increment(self, window, limit=None, now=None):
        """Bump the counter unless it already reached ``limit``.

        The save is checked against the window's version; when another
        worker saved in between, the window is re-read and the limit
        checked again. Returns the new count, or None when the window is full.
        """
        now = ensure_utc(now) or datetime.now(UTC)
        current = window
        for _ in range(MAX_INCREMENT_ATTEMPTS):
            if limit is not None and current.count >= limit:
                return None

            current.count += 1
            current.updated_at = now
            try:
                self.add(current)
            except ExpectedVersionError:
                # Lost the race: re-read and try again
                current = self.get(current.key)
                continue
            return current.count

        raise RateLimitContention(f"Could not increment rate limit window {window.key}")
