"""Error taxonomy for the offline synchronization core."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all NoteSync synchronization errors."""


class StorageUnavailable(SyncError):
    """The local database could not be opened or a storage call failed."""


class RecordNotFound(SyncError):
    """An update referenced a queue id that no longer exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Queued record '{record_id}' not found")
        self.record_id = record_id


class DeliveryFailed(SyncError):
    """A delivery attempt to the remote store did not succeed.

    ``status_code`` is set when the remote store answered with a
    non-success HTTP status; it is None for transport errors and timeouts.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Offline(SyncError):
    """An explicit retry was requested while connectivity is down."""
