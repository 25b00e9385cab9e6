"""Channel adapter port — uniform send contract over heterogeneous transports."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Outcome:
    """Result of one send attempt, as classified by the adapter.

    ``retryable`` covers transient failures (timeouts, 5xx, carrier hiccups);
    permanent ones (invalid address, hard bounce, carrier block) are not.
    """

    accepted: bool
    external_ref: str | None = None
    retryable: bool = False
    error_detail: str | None = None

    @classmethod
    def success(cls, external_ref):
        return cls(accepted=True, external_ref=external_ref)

    @classmethod
    def transient(cls, error_detail):
        return cls(accepted=False, retryable=True, error_detail=error_detail)

    @classmethod
    def permanent(cls, error_detail):
        return cls(accepted=False, retryable=False, error_detail=error_detail)


class ChannelAdapter(ABC):
    """Abstract interface for channel dispatch adapters.

    Called concurrently from dispatcher workers for different recipients.
    Adapters that share an upstream quota must serialize or throttle
    internally; the dispatcher does not.
    """

    channel: str = ""

    @abstractmethod
    def send(self, notification) -> Outcome:
        """Send one notification.

        ``notification`` carries ``address``, ``title``, ``body``, ``data``,
        ``category`` and ``priority``. Must not raise for expected transport
        failures; return a classified ``Outcome`` instead.
        """
        ...
