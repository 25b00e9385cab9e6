"""DeliveryEvent aggregate — append-only lifecycle log of a notification.

Entries are written once and never mutated or deleted. History order is
the per-notification ``sequence``.
"""

from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text

from courier.domain import courier


class DeliveryEventKind(Enum):
    CREATED = "created"
    ATTEMPT = "attempt"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"
    RETRY_SCHEDULED = "retry_scheduled"
    BOUNCED = "bounced"
    COMPLAINED = "complained"


# Kinds reported by the channel after the adapter accepted a message
EXTERNAL_KINDS = frozenset(
    {
        DeliveryEventKind.DELIVERED,
        DeliveryEventKind.OPENED,
        DeliveryEventKind.CLICKED,
        DeliveryEventKind.BOUNCED,
        DeliveryEventKind.COMPLAINED,
    }
)


@courier.aggregate
class DeliveryEvent:
    notification_id: Identifier(required=True)
    kind: String(choices=DeliveryEventKind, required=True)
    sequence: Integer(required=True, min_value=1)
    occurred_at: DateTime(required=True)
    detail: Text()  # JSON object


@courier.repository(part_of=DeliveryEvent)
class DeliveryEventRepository:
    def history(self, notification_id):
        events = self._dao.query.filter(notification_id=str(notification_id)).all().items
        return sorted(events, key=lambda e: e.sequence)

    def count_for(self, notification_id, kind=None):
        criteria = {"notification_id": str(notification_id)}
        if kind is not None:
            criteria["kind"] = kind
        return len(self._dao.query.filter(**criteria).all().items)
