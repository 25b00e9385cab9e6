"""OptOut aggregate — channel-wide consent withdrawal.

An active opt-out on a channel blocks every category on that channel and
overrides any DeliveryPreference. One record per (recipient, channel); a
re-opt-in deactivates it rather than deleting it.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Identifier, String

from courier.consent.events import OptOutCleared, OptOutRecorded
from courier.domain import courier
from courier.notification.notification import Channel
from courier.utils.time import ensure_utc


class OptOutSource(Enum):
    SETTINGS = "settings"
    SMS_KEYWORD = "sms_keyword"
    COMPLAINT = "complaint"
    BOUNCE = "bounce"


def opt_out_key(recipient_id, channel):
    return f"{recipient_id}|{channel}"


@courier.aggregate
class OptOut:
    key: String(identifier=True, max_length=300)

    recipient_id: Identifier(required=True)
    channel: String(choices=Channel, required=True)

    active: Boolean(default=True)
    effective_at: DateTime(required=True)
    source: String(choices=OptOutSource, default=OptOutSource.SETTINGS.value)

    created_at: DateTime()
    updated_at: DateTime()

    @classmethod
    def record(cls, recipient_id, channel, source=OptOutSource.SETTINGS.value, effective_at=None):
        now = datetime.now(UTC)
        effective_at = ensure_utc(effective_at) or now

        opt_out = cls(
            key=opt_out_key(recipient_id, channel),
            recipient_id=recipient_id,
            channel=channel,
            active=True,
            effective_at=effective_at,
            source=source,
            created_at=now,
            updated_at=now,
        )
        opt_out._raise_recorded()
        return opt_out

    def reactivate(self, source=OptOutSource.SETTINGS.value, effective_at=None):
        """Opt out again after a previous opt-in."""
        if self.active:
            raise ValidationError({"active": [f"Already opted out of {self.channel}"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.active = True
            self.source = source
            self.effective_at = ensure_utc(effective_at) or now
            self.updated_at = now
        self._raise_recorded()

    def clear(self, source=OptOutSource.SETTINGS.value):
        """Re-opt-in: the channel is governed by preferences again."""
        if not self.active:
            raise ValidationError({"active": [f"Not currently opted out of {self.channel}"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.active = False
            self.source = source
            self.updated_at = now

        self.raise_(
            OptOutCleared(
                opt_out_key=self.key,
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                source=source,
                cleared_at=now,
            )
        )

    def is_active_at(self, now):
        return bool(self.active) and ensure_utc(self.effective_at) <= ensure_utc(now)

    def _raise_recorded(self):
        self.raise_(
            OptOutRecorded(
                opt_out_key=self.key,
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                source=self.source,
                effective_at=self.effective_at,
            )
        )


@courier.repository(part_of=OptOut)
class OptOutRepository:
    def find_for(self, recipient_id, channel):
        try:
            return self.get(opt_out_key(recipient_id, channel))
        except ObjectNotFoundError:
            return None
