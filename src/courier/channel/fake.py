"""Recording fake adapter — base for the per-channel fakes used in tests and local runs."""

import threading
import time
from collections import deque
from uuid import uuid4

from courier.channel.port import ChannelAdapter, Outcome


class FakeChannelAdapter(ChannelAdapter):
    """Adapter that records messages in memory for test assertions.

    Outcomes can be scripted per call with ``script()``; once the script runs
    out, the configured default applies.
    """

    message_prefix = "msg"
    default_failure_reason = "Delivery failed"

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: list[dict] = []
        self.calls = 0
        self._script = deque()
        self.should_succeed = True
        self.retryable = True
        self.failure_reason = self.default_failure_reason
        self.delay_seconds = 0.0

    def configure(self, should_succeed=True, failure_reason=None, retryable=True, delay_seconds=0.0):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason or self.default_failure_reason
        self.retryable = retryable
        self.delay_seconds = delay_seconds

    def script(self, *outcomes):
        """Queue per-call results: ``Outcome`` instances, or exceptions to raise."""
        with self._lock:
            self._script.extend(outcomes)

    def send(self, notification) -> Outcome:
        with self._lock:
            self.calls += 1
            scripted = self._script.popleft() if self._script else None

        if self.delay_seconds:
            time.sleep(self.delay_seconds)

        if isinstance(scripted, Exception):
            raise scripted

        if scripted is None and not self.should_succeed:
            scripted = Outcome(accepted=False, retryable=self.retryable, error_detail=self.failure_reason)

        if scripted is not None and not scripted.accepted:
            return scripted

        record = self.build_record(notification)
        if isinstance(record, Outcome):
            return record

        message_id = f"{self.message_prefix}-{uuid4().hex[:12]}"
        record["message_id"] = message_id
        record["notification_id"] = str(notification.id)
        with self._lock:
            self.sent.append(record)

        return Outcome.success(message_id)

    def build_record(self, notification):
        """Return the dict to record, or an ``Outcome`` to reject the message."""
        return {"to": notification.address, "body": notification.body}

    def reset(self):
        """Clear sent messages and scripted outcomes (useful between tests)."""
        with self._lock:
            self.sent.clear()
            self._script.clear()
            self.calls = 0
        self.configure()
