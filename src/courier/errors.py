"""Admission errors surfaced synchronously to enqueue callers.

Field-level validation problems are raised as ``protean.exceptions.ValidationError``
and unknown ids as ``protean.exceptions.ObjectNotFoundError``; the errors here
cover the remaining admission outcomes.
"""


class CourierError(Exception):
    """Base class for engine admission errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class DuplicateRequest(CourierError):
    """A request with the same dedup key and channel was admitted within the dedup window."""

    def __init__(self, dedup_key: str, channel: str, existing_id: str):
        super().__init__(
            f"Duplicate request for dedup key {dedup_key!r} on channel {channel!r}",
            dedup_key=dedup_key,
            channel=channel,
            existing_id=existing_id,
        )
        self.existing_id = existing_id


class RecipientUnknown(CourierError):
    """The recipient directory could not resolve the recipient (or its channel endpoint)."""

    def __init__(self, recipient_id: str, reason: str = "Recipient not found"):
        super().__init__(f"{reason}: {recipient_id}", recipient_id=recipient_id)
        self.recipient_id = recipient_id
