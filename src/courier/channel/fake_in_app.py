"""Fake in-app adapter — records inbox messages for testing."""

from courier.channel.fake import FakeChannelAdapter


class FakeInAppAdapter(FakeChannelAdapter):
    channel = "in_app"
    message_prefix = "inapp"
    default_failure_reason = "In-app delivery failed"

    @property
    def inbox(self):
        return self.sent

    def build_record(self, notification):
        return {
            "recipient_id": str(notification.recipient_id),
            "title": notification.title or "",
            "body": notification.body,
        }
