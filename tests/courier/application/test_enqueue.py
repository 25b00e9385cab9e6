"""Application tests for notification admission (EnqueueNotification + intake)."""

import json
from datetime import timedelta

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from courier.errors import DuplicateRequest, RecipientUnknown
from courier.notification.enqueue import EnqueueNotification
from courier.notification.notification import Notification, NotificationStatus
from courier.tracking.delivery_event import DeliveryEvent


def _get(notification_id):
    return current_domain.repository_for(Notification).get(notification_id)


class TestAdmission:
    def test_persists_pending_notification(self, enqueue, now):
        notification = _get(enqueue())
        assert notification.status == NotificationStatus.PENDING.value
        assert notification.address == "ada@example.com"
        assert notification.created_at == now
        assert notification.due_at == now

    def test_future_schedule_is_scheduled(self, enqueue, now):
        notification = _get(enqueue(scheduled_at=now + timedelta(hours=3)))
        assert notification.status == NotificationStatus.SCHEDULED.value

    def test_schedule_within_clock_skew_is_accepted(self, enqueue, now):
        notification = _get(enqueue(scheduled_at=now - timedelta(seconds=30)))
        assert notification.status == NotificationStatus.PENDING.value

    def test_records_created_event(self, enqueue):
        notification_id = enqueue()
        history = current_domain.repository_for(DeliveryEvent).history(notification_id)
        assert [e.kind for e in history] == ["created"]
        assert json.loads(history[0].detail)["status"] == "pending"

    def test_snapshot_of_sms_address(self, enqueue):
        notification = _get(enqueue(channel="sms", title=None, body="Your code is 1234"))
        assert notification.address == "555-010-0001"

    def test_in_app_defaults_to_recipient_inbox(self, enqueue):
        notification = _get(enqueue(channel="in_app"))
        assert notification.address == "cust-1"

    def test_data_payload_is_stored_as_json(self, enqueue):
        notification = _get(enqueue(channel="push", data={"deep_link": "/orders/1001"}))
        assert json.loads(notification.data) == {"deep_link": "/orders/1001"}

    def test_enqueue_with_command_object(self, intake, now):
        command = EnqueueNotification(
            recipient_id="cust-2",
            channel="email",
            category="system",
            priority="urgent",
            title="Password changed",
            body="If this wasn't you, contact support.",
        )
        notification = _get(intake.enqueue(command, now=now))
        assert notification.priority == "urgent"


class TestValidation:
    def test_missing_recipient(self, intake, now):
        with pytest.raises(ValidationError):
            intake.submit(now=now, channel="email", category="system", body="Hi")

    def test_missing_category(self, intake, now):
        with pytest.raises(ValidationError):
            intake.submit(now=now, recipient_id="cust-1", channel="email", body="Hi")

    def test_blank_body(self, enqueue):
        with pytest.raises(ValidationError) as exc:
            enqueue(body="   ")
        assert "body" in exc.value.messages

    def test_blank_title(self, enqueue):
        with pytest.raises(ValidationError) as exc:
            enqueue(title="")
        assert "title" in exc.value.messages

    def test_schedule_in_the_past(self, enqueue, now):
        with pytest.raises(ValidationError) as exc:
            enqueue(scheduled_at=now - timedelta(minutes=5))
        assert "scheduled_at" in exc.value.messages

    def test_expiry_before_send_time(self, enqueue, now):
        with pytest.raises(ValidationError) as exc:
            enqueue(scheduled_at=now + timedelta(hours=2), expires_at=now + timedelta(hours=1))
        assert "expires_at" in exc.value.messages

    def test_unknown_channel(self, enqueue):
        with pytest.raises(ValidationError) as exc:
            enqueue(channel="fax")
        assert "channel" in exc.value.messages

    def test_unknown_category_and_priority(self, enqueue):
        with pytest.raises(ValidationError) as exc:
            enqueue(category="gossip", priority="whenever")
        assert "category" in exc.value.messages
        assert "priority" in exc.value.messages

    def test_invalid_request_is_rejected_before_recipient_lookup(self, enqueue):
        with pytest.raises(ValidationError):
            enqueue(recipient_id="ghost", channel="fax")

    def test_nothing_persisted_on_validation_error(self, enqueue):
        with pytest.raises(ValidationError):
            enqueue(body="")
        assert current_domain.repository_for(Notification).find_by_recipient("cust-1") == []


class TestRecipientResolution:
    def test_unknown_recipient(self, enqueue):
        with pytest.raises(RecipientUnknown) as exc:
            enqueue(recipient_id="ghost")
        assert exc.value.recipient_id == "ghost"

    def test_recipient_timezone_is_snapshotted(self, enqueue, directory):
        directory.add("cust-ny", timezone="America/New_York", email="ny@example.com")
        notification_id = enqueue(recipient_id="cust-ny")
        assert _get(notification_id).recipient_timezone == "America/New_York"

    def test_recipient_without_channel_address(self, enqueue, directory):
        directory.add("cust-3", email="only-email@example.com")
        with pytest.raises(RecipientUnknown):
            enqueue(recipient_id="cust-3", channel="sms")


class TestDeduplication:
    def test_second_request_with_same_key_is_rejected(self, enqueue):
        first = enqueue(dedup_key="spring-sale:cust-1", category="marketing")
        with pytest.raises(DuplicateRequest) as exc:
            enqueue(dedup_key="spring-sale:cust-1", category="marketing")
        assert exc.value.existing_id == first
        assert len(current_domain.repository_for(Notification).find_by_recipient("cust-1")) == 1

    def test_same_key_on_another_channel_is_allowed(self, enqueue):
        enqueue(dedup_key="spring-sale:cust-1")
        enqueue(dedup_key="spring-sale:cust-1", channel="sms", title=None)
        assert len(current_domain.repository_for(Notification).find_by_recipient("cust-1")) == 2

    def test_same_key_after_window_is_allowed(self, enqueue, now, settings):
        enqueue(dedup_key="daily-digest:cust-1")
        later = now + timedelta(seconds=settings.dedup_window_seconds + 1)
        enqueue(at=later, dedup_key="daily-digest:cust-1")
        assert len(current_domain.repository_for(Notification).find_by_recipient("cust-1")) == 2

    def test_requests_without_key_are_never_deduplicated(self, enqueue):
        enqueue()
        enqueue()
        assert len(current_domain.repository_for(Notification).find_by_recipient("cust-1")) == 2
