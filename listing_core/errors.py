from __future__ import annotations


class ListingSyncError(Exception):
    """Base class for listing synchronization errors."""


class TransportUnavailable(ListingSyncError):
    """The persistent connection (or the REST endpoint) cannot be reached."""


class PersistenceFailure(ListingSyncError):
    """The hub-side store failed to commit a write."""


class InvalidMutation(ListingSyncError):
    """A mutation was rejected before any state change (e.g. missing id)."""


class Unauthorized(ListingSyncError):
    """Elevated-privilege check failed."""
