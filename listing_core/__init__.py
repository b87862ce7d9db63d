"""Core data structures and merge rules shared by the hub and the clients."""

from .collection import ListingCollection
from .errors import (
    InvalidMutation,
    ListingSyncError,
    PersistenceFailure,
    TransportUnavailable,
    Unauthorized,
)
from .types import QueueEntry, UpdateAction, UpdateEvent

__all__ = [
    "ListingCollection",
    "ListingSyncError",
    "InvalidMutation",
    "PersistenceFailure",
    "TransportUnavailable",
    "Unauthorized",
    "QueueEntry",
    "UpdateAction",
    "UpdateEvent",
]
