"""In-memory recipient directory for development and tests."""

import threading

from courier.directory.port import Contact, RecipientDirectory
from courier.errors import RecipientUnknown


class InMemoryDirectory(RecipientDirectory):
    def __init__(self, contacts=None):
        self._lock = threading.Lock()
        self._contacts: dict[str, Contact] = {}
        for contact in contacts or []:
            self._contacts[str(contact.recipient_id)] = contact

    def add(self, recipient_id, timezone="UTC", **addresses):
        """Register a recipient, e.g. ``add("r1", email="a@example.com", sms="+15551234567")``."""
        contact = Contact(recipient_id=str(recipient_id), addresses=dict(addresses), timezone=timezone)
        with self._lock:
            self._contacts[contact.recipient_id] = contact
        return contact

    def resolve(self, recipient_id) -> Contact:
        with self._lock:
            contact = self._contacts.get(str(recipient_id))
        if contact is None:
            raise RecipientUnknown(str(recipient_id))
        return contact
