"""DeliveryPreference aggregate — per (recipient, channel, category) consent settings.

Exactly one record exists per tuple: the identity is the composite key
``recipient|channel|category``. A missing record means the recipient
receives the category on that channel with no quiet hours and no cap.
"""

from datetime import UTC, datetime

from protean import atomic_change
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String

from courier.consent.events import PreferenceSet, QuietHoursCleared, QuietHoursSet
from courier.consent.quiet_hours import parse_time_of_day, quiet_window_end, resolve_timezone
from courier.domain import courier
from courier.notification.notification import Category, Channel
from courier.utils.time import ensure_utc


def preference_key(recipient_id, channel, category):
    return f"{recipient_id}|{channel}|{category}"


@courier.aggregate
class DeliveryPreference:
    """A recipient's consent settings for one category on one channel."""

    key: String(identifier=True, max_length=300)

    recipient_id: Identifier(required=True)
    channel: String(choices=Channel, required=True)
    category: String(choices=Category, required=True)

    enabled: Boolean(default=True)

    # Quiet hours (DND), local time in `timezone`, else the recipient's directory timezone
    quiet_hours_start: String(max_length=5)  # "22:00" format
    quiet_hours_end: String(max_length=5)  # "08:00" format
    timezone: String(max_length=64)

    # Max notifications per day for this tuple
    daily_limit: Integer(min_value=1)

    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, recipient_id, channel, category, enabled=True, daily_limit=None, timezone=None, now=None):
        """Create a preference record. Defaults match the implicit no-record behaviour."""
        now = ensure_utc(now) or datetime.now(UTC)
        if timezone:
            resolve_timezone(timezone)

        preference = cls(
            key=preference_key(recipient_id, channel, category),
            recipient_id=recipient_id,
            channel=channel,
            category=category,
            enabled=enabled,
            daily_limit=daily_limit,
            timezone=timezone,
            created_at=now,
            updated_at=now,
        )

        preference.raise_(
            PreferenceSet(
                preference_key=preference.key,
                recipient_id=str(recipient_id),
                channel=channel,
                category=category,
                enabled=enabled,
                daily_limit=daily_limit,
                updated_at=now,
            )
        )

        return preference

    # -------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------
    def update(self, enabled=None, daily_limit=None, clear_daily_limit=False):
        """Change the enabled flag and/or daily cap. Pass None to keep unchanged."""
        if enabled is None and daily_limit is None and not clear_daily_limit:
            raise ValidationError({"preference": ["At least one setting must be provided"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            if enabled is not None:
                self.enabled = enabled
            if clear_daily_limit:
                self.daily_limit = None
            elif daily_limit is not None:
                self.daily_limit = daily_limit
            self.updated_at = now

        self.raise_(
            PreferenceSet(
                preference_key=self.key,
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                category=self.category,
                enabled=self.enabled,
                daily_limit=self.daily_limit,
                updated_at=now,
            )
        )

    def set_quiet_hours(self, start, end, timezone=None):
        """Set do-not-disturb window. Both start and end required."""
        if not start or not end:
            raise ValidationError({"quiet_hours": ["Both start and end times are required"]})

        parse_time_of_day(start, "quiet_hours_start")
        parse_time_of_day(end, "quiet_hours_end")
        if timezone:
            resolve_timezone(timezone)

        now = datetime.now(UTC)
        with atomic_change(self):
            self.quiet_hours_start = start
            self.quiet_hours_end = end
            if timezone:
                self.timezone = timezone
            self.updated_at = now

        self.raise_(
            QuietHoursSet(
                preference_key=self.key,
                recipient_id=str(self.recipient_id),
                start=start,
                end=end,
                timezone=self.timezone,
                updated_at=now,
            )
        )

    def clear_quiet_hours(self):
        """Remove the quiet hours window."""
        now = datetime.now(UTC)
        with atomic_change(self):
            self.quiet_hours_start = None
            self.quiet_hours_end = None
            self.updated_at = now

        self.raise_(
            QuietHoursCleared(
                preference_key=self.key,
                recipient_id=str(self.recipient_id),
                cleared_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------
    @property
    def has_quiet_hours(self):
        return bool(self.quiet_hours_start and self.quiet_hours_end)

    def quiet_until(self, now, fallback_timezone=None):
        """End of the quiet window (UTC) if ``now`` falls inside it, else None."""
        if not self.has_quiet_hours:
            return None
        timezone = self.timezone or fallback_timezone or "UTC"
        return quiet_window_end(self.quiet_hours_start, self.quiet_hours_end, timezone, now)


@courier.repository(part_of=DeliveryPreference)
class DeliveryPreferenceRepository:
    def find_for(self, recipient_id, channel, category):
        """Return the preference for the tuple, or None when the recipient has none."""
        try:
            return self.get(preference_key(recipient_id, channel, category))
        except ObjectNotFoundError:
            return None

    def find_by_recipient(self, recipient_id):
        return self._dao.query.filter(recipient_id=str(recipient_id)).all().items
