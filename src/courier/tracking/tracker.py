"""Delivery tracker — records lifecycle events and answers status queries.

The tracker never writes Notification state; transitions belong to the
dispatcher. For a sent notification, later channel reports (delivered,
opened, clicked, bounced) show up as the effective state only.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime

from protean.utils.globals import current_domain

from courier.notification.notification import Notification, NotificationStatus
from courier.tracking.delivery_event import DeliveryEvent, DeliveryEventKind
from courier.utils.time import ensure_utc, utcnow

# Later entries outrank earlier ones
_ENGAGEMENT = (
    DeliveryEventKind.DELIVERED.value,
    DeliveryEventKind.OPENED.value,
    DeliveryEventKind.CLICKED.value,
)


@dataclass(frozen=True)
class HistoryEntry:
    kind: str
    sequence: int
    occurred_at: datetime
    detail: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryStatus:
    notification_id: str
    status: str
    effective_state: str
    channel: str
    attempt_count: int
    external_ref: str | None
    error: str | None
    last_error: str | None
    next_attempt_at: datetime | None
    sent_at: datetime | None
    history: list[HistoryEntry]


def effective_state(status, kinds):
    """Lifecycle state with external annotations applied to sent records."""
    if status != NotificationStatus.SENT.value:
        return status

    reached = [kind for kind in _ENGAGEMENT if kind in kinds]
    if reached:
        return reached[-1]
    if DeliveryEventKind.BOUNCED.value in kinds:
        return DeliveryEventKind.BOUNCED.value
    return status


class DeliveryTracker:
    def record(self, notification_id, kind, detail=None, now=None):
        """Append one event. Raises ObjectNotFoundError for unknown notifications."""
        kind = DeliveryEventKind(kind).value
        current_domain.repository_for(Notification).get(notification_id)

        repo = current_domain.repository_for(DeliveryEvent)
        event = DeliveryEvent(
            notification_id=str(notification_id),
            kind=kind,
            sequence=repo.count_for(notification_id) + 1,
            occurred_at=ensure_utc(now) or utcnow(),
            detail=json.dumps(detail or {}, default=str, sort_keys=True),
        )
        repo.add(event)
        return event

    def history(self, notification_id):
        events = current_domain.repository_for(DeliveryEvent).history(notification_id)
        return [
            HistoryEntry(
                kind=event.kind,
                sequence=event.sequence,
                occurred_at=ensure_utc(event.occurred_at),
                detail=json.loads(event.detail) if event.detail else {},
            )
            for event in events
        ]

    def status(self, notification_id) -> DeliveryStatus:
        notification = current_domain.repository_for(Notification).get(notification_id)
        history = self.history(notification_id)

        return DeliveryStatus(
            notification_id=str(notification.id),
            status=notification.status,
            effective_state=effective_state(notification.status, {entry.kind for entry in history}),
            channel=notification.channel,
            attempt_count=notification.attempt_count,
            external_ref=notification.external_ref,
            error=notification.error,
            last_error=notification.last_error,
            next_attempt_at=ensure_utc(notification.next_attempt_at),
            sent_at=ensure_utc(notification.sent_at),
            history=history,
        )
