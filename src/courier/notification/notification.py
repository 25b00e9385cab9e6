"""Notification aggregate — a single unit of intended communication.

Each notification targets one recipient on one channel. It is created by the
enqueue command, mutated only by the dispatcher, and never deleted.

State Machine:
    PENDING / SCHEDULED → DISPATCHING → SENT
    PENDING / SCHEDULED → RETRY_SCHEDULED (policy deferral, no attempt consumed)
    DISPATCHING → RETRY_SCHEDULED (retryable failure) → DISPATCHING → ...
    DISPATCHING → FAILED
    PENDING / SCHEDULED / RETRY_SCHEDULED → CANCELLED
"""

from datetime import timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from courier.domain import courier
from courier.notification.events import (
    NotificationCancellationRequested,
    NotificationCancelled,
    NotificationDeferred,
    NotificationDispatched,
    NotificationEnqueued,
    NotificationFailed,
    NotificationRetryScheduled,
    NotificationSent,
)
from courier.utils.time import ensure_utc, utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Channel(Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class Category(Enum):
    MARKETING = "marketing"
    TRANSACTIONAL = "transactional"
    SYSTEM = "system"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    DISPATCHING = "dispatching"
    RETRY_SCHEDULED = "retry_scheduled"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


PRIORITY_RANK = {
    Priority.URGENT.value: 3,
    Priority.HIGH.value: 2,
    Priority.NORMAL.value: 1,
    Priority.LOW.value: 0,
}

TERMINAL_STATUSES = frozenset(
    {
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
        NotificationStatus.CANCELLED,
    }
)

# Statuses the dispatcher picks up once due_at has passed
DUE_STATUSES = (
    NotificationStatus.PENDING,
    NotificationStatus.SCHEDULED,
    NotificationStatus.RETRY_SCHEDULED,
    NotificationStatus.DISPATCHING,  # abandoned claims, once the lease runs out
)

RETRIES_EXHAUSTED = "RetriesExhausted"
EXPIRED = "Expired"


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_WAITING = {
    NotificationStatus.DISPATCHING,
    NotificationStatus.RETRY_SCHEDULED,
    NotificationStatus.CANCELLED,
}

_VALID_TRANSITIONS = {
    NotificationStatus.PENDING: _WAITING,
    NotificationStatus.SCHEDULED: _WAITING,
    NotificationStatus.RETRY_SCHEDULED: _WAITING,
    NotificationStatus.DISPATCHING: {
        NotificationStatus.SENT,
        NotificationStatus.RETRY_SCHEDULED,
        NotificationStatus.FAILED,
        NotificationStatus.CANCELLED,
    },
    NotificationStatus.SENT: set(),  # Terminal
    NotificationStatus.FAILED: set(),  # Terminal
    NotificationStatus.CANCELLED: set(),  # Terminal
}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@courier.aggregate
class Notification:
    """A notification addressed to one recipient on one channel.

    Content arrives pre-rendered; the engine treats title and body as opaque.
    ``due_at`` is the single selection column: the instant at which the
    dispatcher should next look at the record.
    """

    # Recipient
    recipient_id: Identifier(required=True)
    address: String(max_length=500)  # Channel endpoint resolved at enqueue time
    recipient_timezone: String(max_length=64)  # From the directory, for quiet hours

    # Classification
    channel: String(choices=Channel, required=True)
    category: String(choices=Category, required=True)
    priority: String(choices=Priority, default=Priority.NORMAL.value)

    # Content
    title: String(max_length=255)
    body: Text(required=True)
    data: Text()  # JSON: opaque channel payload (push data, deep links)

    # Idempotency
    dedup_key: String(max_length=255)

    # Status
    status: String(choices=NotificationStatus, default=NotificationStatus.PENDING.value)

    # Scheduling
    scheduled_at: DateTime()  # Null means immediate
    expires_at: DateTime()
    due_at: DateTime()
    next_attempt_at: DateTime()

    # Attempts
    attempt_count: Integer(default=0, min_value=0)
    claim_version: Integer(default=0)

    # Outcome
    external_ref: String(max_length=255)
    error: String(max_length=500)  # Terminal error (failed / cancelled)
    last_error: String(max_length=500)  # Most recent transport failure
    deferral_reason: String(max_length=100)  # Most recent policy deferral
    sent_at: DateTime()

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def next_attempt_only_while_retry_scheduled(self):
        waiting = self.status == NotificationStatus.RETRY_SCHEDULED.value
        if waiting != (self.next_attempt_at is not None):
            raise ValidationError({"next_attempt_at": ["next_attempt_at is set only while retry_scheduled"]})

    @invariant.post
    def terminal_error_only_when_failed_or_cancelled(self):
        ended = self.status in (NotificationStatus.FAILED.value, NotificationStatus.CANCELLED.value)
        if ended != bool(self.error):
            raise ValidationError({"error": ["error is set only on failed or cancelled notifications"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        recipient_id,
        channel,
        category,
        body,
        title=None,
        priority=Priority.NORMAL.value,
        address=None,
        recipient_timezone=None,
        data=None,
        dedup_key=None,
        scheduled_at=None,
        expires_at=None,
        now=None,
    ):
        """Create a notification in PENDING, or SCHEDULED when future-dated."""
        now = ensure_utc(now) or utcnow()
        scheduled_at = ensure_utc(scheduled_at)
        expires_at = ensure_utc(expires_at)

        if scheduled_at is not None and scheduled_at > now:
            status = NotificationStatus.SCHEDULED.value
            due_at = scheduled_at
        else:
            status = NotificationStatus.PENDING.value
            due_at = now

        notification = cls(
            recipient_id=recipient_id,
            address=address,
            recipient_timezone=recipient_timezone,
            channel=channel,
            category=category,
            priority=priority or Priority.NORMAL.value,
            title=title,
            body=body,
            data=data,
            dedup_key=dedup_key,
            status=status,
            scheduled_at=scheduled_at,
            expires_at=expires_at,
            due_at=due_at,
            attempt_count=0,
            claim_version=0,
            created_at=now,
            updated_at=now,
        )

        notification.raise_(
            NotificationEnqueued(
                notification_id=str(notification.id),
                recipient_id=str(recipient_id),
                channel=channel,
                category=category,
                priority=notification.priority,
                status=status,
                scheduled_at=scheduled_at,
                expires_at=expires_at,
                created_at=now,
            )
        )

        return notification

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_terminal(self):
        return NotificationStatus(self.status) in TERMINAL_STATUSES

    @property
    def priority_rank(self):
        return PRIORITY_RANK.get(self.priority, PRIORITY_RANK[Priority.NORMAL.value])

    def is_expired(self, now):
        return self.expires_at is not None and ensure_utc(self.expires_at) <= ensure_utc(now)

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        """Validate state machine transition."""
        current = NotificationStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def start_attempt(self, now, lease_seconds):
        """Move to DISPATCHING and consume one delivery attempt.

        ``due_at`` becomes the end of the dispatch lease: if no outcome is
        recorded by then, the record is picked up again as abandoned.
        """
        self._assert_can_transition(NotificationStatus.DISPATCHING)

        with atomic_change(self):
            self.status = NotificationStatus.DISPATCHING.value
            self.attempt_count = self.attempt_count + 1
            self.next_attempt_at = None
            self.due_at = now + timedelta(seconds=lease_seconds)
            self.updated_at = now

        self.raise_(
            NotificationDispatched(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                attempt_count=self.attempt_count,
                dispatched_at=now,
            )
        )

    def mark_sent(self, external_ref, now):
        """Record that the channel adapter accepted the notification."""
        self._assert_can_transition(NotificationStatus.SENT)

        with atomic_change(self):
            self.status = NotificationStatus.SENT.value
            self.external_ref = external_ref
            self.sent_at = now
            self.due_at = now
            self.updated_at = now

        self.raise_(
            NotificationSent(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                external_ref=external_ref,
                attempt_count=self.attempt_count,
                sent_at=now,
            )
        )

    def defer(self, until, reason, now):
        """Postpone without consuming an attempt (policy denial, not a delivery failure)."""
        self._assert_can_transition(NotificationStatus.RETRY_SCHEDULED)
        if NotificationStatus(self.status) == NotificationStatus.DISPATCHING:
            raise ValidationError({"status": ["A dispatching notification cannot be deferred"]})

        with atomic_change(self):
            self.status = NotificationStatus.RETRY_SCHEDULED.value
            self.next_attempt_at = until
            self.due_at = until
            self.deferral_reason = reason
            self.updated_at = now

        self.raise_(
            NotificationDeferred(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                reason=reason,
                next_attempt_at=until,
                deferred_at=now,
            )
        )

    def schedule_retry(self, next_attempt_at, error, now):
        """Schedule another attempt after a retryable transport failure."""
        if NotificationStatus(self.status) != NotificationStatus.DISPATCHING:
            raise ValidationError({"status": ["Only dispatching notifications can be retried"]})

        with atomic_change(self):
            self.status = NotificationStatus.RETRY_SCHEDULED.value
            self.next_attempt_at = next_attempt_at
            self.due_at = next_attempt_at
            self.last_error = error
            self.updated_at = now

        self.raise_(
            NotificationRetryScheduled(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                error=error,
                attempt_count=self.attempt_count,
                next_attempt_at=next_attempt_at,
                failed_at=now,
            )
        )

    def mark_failed(self, error, now, last_error=None):
        """Move to the terminal FAILED state."""
        self._assert_can_transition(NotificationStatus.FAILED)

        with atomic_change(self):
            self.status = NotificationStatus.FAILED.value
            self.error = error
            self.last_error = last_error or error
            self.due_at = now
            self.updated_at = now

        self.raise_(
            NotificationFailed(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                error=error,
                attempt_count=self.attempt_count,
                failed_at=now,
            )
        )

    def cancel(self, reason, now, last_error=None):
        """Move to the terminal CANCELLED state; no further attempts are made.

        A dispatching record is cancelled only when its attempt failed after
        it expired; ``last_error`` keeps that failure.
        """
        self._assert_can_transition(NotificationStatus.CANCELLED)

        with atomic_change(self):
            self.status = NotificationStatus.CANCELLED.value
            self.error = reason
            if last_error:
                self.last_error = last_error
            self.next_attempt_at = None
            self.due_at = now
            self.updated_at = now

        self.raise_(
            NotificationCancelled(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                reason=reason,
                cancelled_at=now,
            )
        )

    def request_cancellation(self, now):
        """Expire the notification now; the next poll cancels it.

        Returns False when the notification is already terminal.
        """
        if self.is_terminal:
            return False

        with atomic_change(self):
            self.expires_at = now
            # Pull future-dated work forward so the next poll sees it
            if NotificationStatus(self.status) != NotificationStatus.DISPATCHING:
                self.due_at = now
            self.updated_at = now

        self.raise_(
            NotificationCancellationRequested(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                channel=self.channel,
                requested_at=now,
            )
        )
        return True


@courier.repository(part_of=Notification)
class NotificationRepository:
    def find_due(self, as_of, limit=100):
        """Records whose ``due_at`` has passed, urgent first, then oldest first."""
        candidates = []
        for priority in sorted(PRIORITY_RANK, key=PRIORITY_RANK.get, reverse=True):
            for status in DUE_STATUSES:
                candidates.extend(
                    self._dao.query.filter(status=status.value, priority=priority, due_at__lte=as_of)
                    .order_by("due_at")
                    .limit(limit)
                    .all()
                    .items
                )
            # Lower priorities cannot displace what is already collected
            if len(candidates) >= limit:
                break

        candidates.sort(key=lambda n: (-n.priority_rank, ensure_utc(n.due_at)))
        return candidates[:limit]

    def claim(self, notification, now, lease_seconds):
        """Stamp the record as ours, guarded by the aggregate version.

        The save only succeeds if nobody wrote the record since it was read;
        it also pushes ``due_at`` past the lease, so no other poll selects the
        record while we act on it. Returns the notification with its new claim
        version, or None when another worker got there first.
        """
        with atomic_change(notification):
            notification.claim_version = (notification.claim_version or 0) + 1
            notification.due_at = now + timedelta(seconds=lease_seconds)
            notification.updated_at = now

        try:
            self.add(notification)
        except ExpectedVersionError:
            return None
        return notification

    def find_duplicate(self, dedup_key, channel, since):
        """Most recent record with the same dedup key and channel created after ``since``."""
        matches = (
            self._dao.query.filter(dedup_key=dedup_key, channel=channel, created_at__gte=since)
            .order_by("-created_at")
            .all()
            .items
        )
        return matches[0] if matches else None

    def find_by_external_ref(self, external_ref):
        matches = self._dao.query.filter(external_ref=external_ref).all().items
        if not matches:
            raise ObjectNotFoundError(f"No notification with external reference {external_ref}")
        return matches[0]

    def find_by_recipient(self, recipient_id):
        return self._dao.query.filter(recipient_id=str(recipient_id)).order_by("-created_at").all().items
