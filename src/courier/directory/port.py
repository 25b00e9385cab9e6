"""Recipient directory port — contact lookup owned by an external system."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Contact:
    """What the engine needs to know about a recipient.

    ``addresses`` maps channel kind to endpoint: email address, phone
    number, device token, or inbox id for in-app messages.
    """

    recipient_id: str
    addresses: dict = field(default_factory=dict)
    timezone: str = "UTC"

    def address_for(self, channel):
        return self.addresses.get(channel)


class RecipientDirectory(ABC):
    @abstractmethod
    def resolve(self, recipient_id) -> Contact:
        """Return contact info, raising ``RecipientUnknown`` if there is none."""
        ...
