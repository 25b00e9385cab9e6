"""Domain events for the DeliveryPreference and OptOut aggregates."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from courier.domain import courier


@courier.event(part_of="DeliveryPreference")
class PreferenceSet:
    """A recipient's preference for a (channel, category) was created or changed."""

    __version__ = 1

    preference_key: String(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    category: String(required=True)
    enabled: Boolean(required=True)
    daily_limit: Integer()
    updated_at: DateTime(required=True)


@courier.event(part_of="DeliveryPreference")
class QuietHoursSet:
    """A do-not-disturb window was configured."""

    __version__ = 1

    preference_key: String(required=True)
    recipient_id: Identifier(required=True)
    start: String(required=True)
    end: String(required=True)
    timezone: String()
    updated_at: DateTime(required=True)


@courier.event(part_of="DeliveryPreference")
class QuietHoursCleared:
    """The do-not-disturb window was removed."""

    __version__ = 1

    preference_key: String(required=True)
    recipient_id: Identifier(required=True)
    cleared_at: DateTime(required=True)


@courier.event(part_of="OptOut")
class OptOutRecorded:
    """A recipient withdrew consent for every category on a channel."""

    __version__ = 1

    opt_out_key: String(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    source: String(required=True)
    effective_at: DateTime(required=True)


@courier.event(part_of="OptOut")
class OptOutCleared:
    """A recipient re-opted in on a channel."""

    __version__ = 1

    opt_out_key: String(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    source: String(required=True)
    cleared_at: DateTime(required=True)
