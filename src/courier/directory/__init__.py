from courier.directory.memory import InMemoryDirectory
from courier.directory.port import Contact, RecipientDirectory

__all__ = ["Contact", "InMemoryDirectory", "RecipientDirectory"]
