"""Fake push adapter — records sent push notifications for testing."""

import json

from courier.channel.fake import FakeChannelAdapter
from courier.channel.port import Outcome


class FakePushAdapter(FakeChannelAdapter):
    channel = "push"
    message_prefix = "push"
    default_failure_reason = "Push delivery failed"

    @property
    def sent_pushes(self):
        return self.sent

    def build_record(self, notification):
        if not notification.address:
            return Outcome.permanent("Missing device token")
        return {
            "device_token": notification.address,
            "title": notification.title or "",
            "body": notification.body,
            "data": json.loads(notification.data) if notification.data else None,
        }
