"""Channel adapter registry — one adapter per channel kind.

The dispatcher only sees the ``ChannelAdapter`` interface; which concrete
adapter serves a channel is decided when the registry is built. Fake
adapters are the default; real transports are registered in production.
"""

from courier.channel.port import ChannelAdapter, Outcome
from courier.notification.notification import Channel

__all__ = ["ChannelAdapter", "ChannelRegistry", "Outcome", "build_default_registry"]


class ChannelRegistry:
    def __init__(self, adapters: dict[str, ChannelAdapter] | None = None):
        self._adapters: dict[str, ChannelAdapter] = {}
        for channel, adapter in (adapters or {}).items():
            self.register(channel, adapter)

    def register(self, channel: str, adapter: ChannelAdapter) -> None:
        if channel not in {c.value for c in Channel}:
            raise ValueError(f"Unknown channel type: {channel}")
        self._adapters[channel] = adapter

    def get(self, channel: str) -> ChannelAdapter:
        """Return the adapter for a channel kind.

        Args:
            channel: One of Channel enum values ("email", "sms", "push", "in_app")
        """
        try:
            return self._adapters[channel]
        except KeyError:
            raise LookupError(f"No adapter registered for channel: {channel}") from None

def build_default_registry() -> ChannelRegistry:
    """Registry backed by the in-memory fake adapters (development and tests)."""
    from courier.channel.fake_email import FakeEmailAdapter
    from courier.channel.fake_in_app import FakeInAppAdapter
    from courier.channel.fake_push import FakePushAdapter
    from courier.channel.fake_sms import FakeSMSAdapter

    return ChannelRegistry(
        {
            Channel.EMAIL.value: FakeEmailAdapter(),
            Channel.SMS.value: FakeSMSAdapter(),
            Channel.PUSH.value: FakePushAdapter(),
            Channel.IN_APP.value: FakeInAppAdapter(),
        }
    )
