"""Preference & consent gate — may this recipient receive this category on this channel now?

A pure decision: it reads opt-outs, preferences and the daily tally, and
never writes. The dispatcher acts on the verdict.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from protean.utils.globals import current_domain

from courier.consent.opt_out import OptOut
from courier.consent.preference import DeliveryPreference
from courier.ratelimit.limiter import DAY_SECONDS, RateLimiter
from courier.utils.time import ensure_utc


class DenialReason(Enum):
    OPTED_OUT = "OptedOut"
    PREFERENCE_DISABLED = "PreferenceDisabled"
    QUIET_HOURS = "QuietHours"
    FREQUENCY_CAPPED = "FrequencyCapped"
    RATE_LIMITED = "RateLimited"


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: str | None = None
    retry_after: datetime | None = None

    @classmethod
    def allowed(cls):
        return cls(allow=True)

    @classmethod
    def denied(cls, reason: DenialReason, retry_after=None):
        return cls(allow=False, reason=reason.value, retry_after=retry_after)

    @property
    def is_permanent(self):
        """Denied with nothing to wait for: the notification should be cancelled."""
        return not self.allow and self.retry_after is None


class ConsentGate:
    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    def may_send(self, recipient_id, channel, category, now, timezone=None) -> Decision:
        """Decide for one send at ``now``.

        ``timezone`` is the recipient's own zone from the directory; quiet hours
        use it unless the preference names a zone of its own.
        """
        now = ensure_utc(now)

        opt_out = current_domain.repository_for(OptOut).find_for(recipient_id, channel)
        if opt_out is not None and opt_out.is_active_at(now):
            return Decision.denied(DenialReason.OPTED_OUT)

        preference = current_domain.repository_for(DeliveryPreference).find_for(recipient_id, channel, category)
        if preference is None:
            return Decision.allowed()

        if not preference.enabled:
            return Decision.denied(DenialReason.PREFERENCE_DISABLED)

        quiet_until = preference.quiet_until(now, fallback_timezone=timezone)
        if quiet_until is not None:
            return Decision.denied(DenialReason.QUIET_HOURS, retry_after=quiet_until)

        if preference.daily_limit:
            sent_today, day_end = self.limiter.current_count(
                recipient_id, channel, category, now, window_seconds=DAY_SECONDS
            )
            if sent_today >= preference.daily_limit:
                return Decision.denied(DenialReason.FREQUENCY_CAPPED, retry_after=day_end)

        return Decision.allowed()
