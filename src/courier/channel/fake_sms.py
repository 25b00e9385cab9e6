"""Fake SMS adapter — records sent messages for testing."""

from courier.channel.fake import FakeChannelAdapter
from courier.channel.port import Outcome
from courier.channel.sms import normalize_phone_number, prepare_sms_body


class FakeSMSAdapter(FakeChannelAdapter):
    channel = "sms"
    message_prefix = "sms"
    default_failure_reason = "SMS delivery failed"

    @property
    def sent_messages(self):
        return self.sent

    def build_record(self, notification):
        to = normalize_phone_number(notification.address)
        if to is None:
            return Outcome.permanent(f"Invalid phone number: {notification.address!r}")
        return {
            "to": to,
            "body": prepare_sms_body(notification.body, notification.category),
        }
