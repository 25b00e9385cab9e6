"""Fake email adapter — records sent emails for testing."""

from courier.channel.fake import FakeChannelAdapter
from courier.channel.port import Outcome


class FakeEmailAdapter(FakeChannelAdapter):
    channel = "email"
    message_prefix = "email"
    default_failure_reason = "Email delivery failed"

    @property
    def sent_emails(self):
        return self.sent

    def build_record(self, notification):
        if not notification.address or "@" not in notification.address:
            return Outcome.permanent(f"Invalid email address: {notification.address!r}")
        return {
            "to": notification.address,
            "subject": notification.title or "",
            "body": notification.body,
        }
