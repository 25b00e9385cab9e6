"""Domain events for the Notification aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from courier.domain import courier


@courier.event(part_of="Notification")
class NotificationEnqueued:
    """A notification request was admitted and persisted."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    category: String(required=True)
    priority: String(required=True)
    status: String(required=True)
    scheduled_at: DateTime()
    expires_at: DateTime()
    created_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationDispatched:
    """A delivery attempt was handed to the channel adapter."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    attempt_count: Integer(required=True)
    dispatched_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationSent:
    """The channel adapter accepted the notification."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    external_ref: String()
    attempt_count: Integer(required=True)
    sent_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationDeferred:
    """Policy (quiet hours, frequency cap, rate limit) postponed the notification."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    reason: String(required=True)
    next_attempt_at: DateTime(required=True)
    deferred_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationRetryScheduled:
    """A retryable transport failure was scheduled for another attempt."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    error: String(required=True)
    attempt_count: Integer(required=True)
    next_attempt_at: DateTime(required=True)
    failed_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationFailed:
    """The notification reached the terminal failed state."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    error: String(required=True)
    attempt_count: Integer(required=True)
    failed_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationCancelled:
    """The notification was cancelled (opt-out, disabled preference or expiry)."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    reason: String(required=True)
    cancelled_at: DateTime(required=True)


@courier.event(part_of="Notification")
class NotificationCancellationRequested:
    """A caller asked for the notification to be cancelled; it now expires immediately."""

    __version__ = 1

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    channel: String(required=True)
    requested_at: DateTime(required=True)
