"""EnqueueNotification command + intake service — admission of new requests.

Admission is synchronous: the caller either gets the new notification id
or one of the admission errors (ValidationError, DuplicateRequest,
RecipientUnknown). Nothing is retried on the caller's behalf.
"""

import json
import threading
from datetime import timedelta

import structlog
from protean.exceptions import ValidationError
from protean.fields import DateTime, Dict, Identifier, String, Text
from protean.utils.globals import current_domain

from courier.directory.port import RecipientDirectory
from courier.domain import courier
from courier.errors import DuplicateRequest, RecipientUnknown
from courier.notification.notification import Category, Channel, Notification, Priority
from courier.settings import EngineSettings, load_settings
from courier.tracking.delivery_event import DeliveryEventKind
from courier.tracking.tracker import DeliveryTracker
from courier.utils.time import ensure_utc, utcnow

logger = structlog.get_logger(__name__)


@courier.command(part_of="Notification")
class EnqueueNotification:
    """Request to deliver pre-rendered content to one recipient on one channel."""

    recipient_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    category: String(required=True, max_length=20)
    priority: String(max_length=20, default=Priority.NORMAL.value)
    title: String(max_length=255)
    body: Text(required=True)
    data: Dict()
    dedup_key: String(max_length=255)
    scheduled_at: DateTime()
    expires_at: DateTime()


class NotificationIntake:
    """Validates, deduplicates and persists enqueue requests."""

    def __init__(self, directory: RecipientDirectory, settings: EngineSettings | None = None, tracker=None):
        self.directory = directory
        self.settings = settings or load_settings()
        self.tracker = tracker or DeliveryTracker()
        # Serializes the dedup check with the insert it guards
        self._admission_lock = threading.Lock()

    def submit(self, now=None, **request):
        """Build the command from keyword fields and enqueue it."""
        return self.enqueue(EnqueueNotification(**request), now=now)

    def enqueue(self, command: EnqueueNotification, now=None) -> str:
        now = ensure_utc(now) or utcnow()
        self._validate(command, now)
        contact, address = self._resolve_address(command)

        repo = current_domain.repository_for(Notification)
        with self._admission_lock:
            if command.dedup_key:
                since = now - timedelta(seconds=self.settings.dedup_window_seconds)
                existing = repo.find_duplicate(command.dedup_key, command.channel, since)
                if existing is not None:
                    logger.info(
                        "Duplicate enqueue rejected",
                        dedup_key=command.dedup_key,
                        channel=command.channel,
                        existing_id=str(existing.id),
                    )
                    raise DuplicateRequest(command.dedup_key, command.channel, str(existing.id))

            notification = Notification.create(
                recipient_id=command.recipient_id,
                channel=command.channel,
                category=command.category,
                priority=command.priority,
                title=command.title,
                body=command.body,
                address=address,
                recipient_timezone=contact.timezone,
                data=json.dumps(command.data) if command.data else None,
                dedup_key=command.dedup_key,
                scheduled_at=command.scheduled_at,
                expires_at=command.expires_at,
                now=now,
            )
            repo.add(notification)

        self.tracker.record(
            notification.id,
            DeliveryEventKind.CREATED,
            {"status": notification.status, "priority": notification.priority},
            now=now,
        )

        logger.info(
            "Notification enqueued",
            notification_id=str(notification.id),
            recipient_id=str(notification.recipient_id),
            channel=notification.channel,
            category=notification.category,
            status=notification.status,
        )
        return str(notification.id)

    def _validate(self, command, now):
        errors = {}
        if not (command.body or "").strip():
            errors["body"] = ["Body must not be empty"]
        if command.title is not None and not command.title.strip():
            errors["title"] = ["Title must not be empty"]

        for field_name, choices in (("channel", Channel), ("category", Category), ("priority", Priority)):
            value = getattr(command, field_name)
            if value is not None and value not in {member.value for member in choices}:
                errors[field_name] = [f"Unknown {field_name}: {value}"]

        scheduled_at = ensure_utc(command.scheduled_at)
        skew = timedelta(seconds=self.settings.schedule_skew_seconds)
        if scheduled_at is not None and scheduled_at < now - skew:
            errors["scheduled_at"] = ["scheduled_at is in the past"]

        expires_at = ensure_utc(command.expires_at)
        if expires_at is not None and expires_at <= max(now, scheduled_at or now):
            errors["expires_at"] = ["expires_at must be after the send time"]

        if errors:
            raise ValidationError(errors)

    def _resolve_address(self, command):
        contact = self.directory.resolve(command.recipient_id)
        address = contact.address_for(command.channel)
        if not address and command.channel == Channel.IN_APP.value:
            # The inbox is keyed by the recipient itself
            address = str(command.recipient_id)
        if not address:
            raise RecipientUnknown(str(command.recipient_id), reason=f"No {command.channel} address for recipient")
        return contact, address
