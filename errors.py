class HandstackError(Exception):
    """Base class for errors raised by the room core."""


class NotFound(HandstackError):
    """The room or participant does not exist."""


class StorageError(HandstackError):
    """The backing store is unreachable or did not answer in time."""


class ValidationError(HandstackError):
    """Malformed room code or display name. Raised before any store call."""
