from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .errors import InvalidMutation
from .protocols import LISTING_ADDED, LISTING_DELETED, LISTING_UPDATED

Listing = Dict[str, Any]


class UpdateAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"

    @property
    def msg_type(self) -> str:
        return _ACTION_TO_MSG[self]

    @classmethod
    def parse(cls, value: "str | UpdateAction") -> "UpdateAction":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidMutation(f"unknown action: {value!r}")
        raw = value.strip().lower()
        if raw in _MSG_TO_ACTION:
            return _MSG_TO_ACTION[raw]
        try:
            return cls(raw)
        except ValueError as exc:
            raise InvalidMutation(f"unknown action: {value!r}") from exc


_ACTION_TO_MSG = {
    UpdateAction.ADDED: LISTING_ADDED,
    UpdateAction.UPDATED: LISTING_UPDATED,
    UpdateAction.DELETED: LISTING_DELETED,
}
_MSG_TO_ACTION = {v: k for k, v in _ACTION_TO_MSG.items()}


def now_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def new_listing_id() -> str:
    return str(int(time.time() * 1000))


def listing_id(listing: Any) -> Optional[str]:
    if not isinstance(listing, dict):
        return None
    raw = listing.get("id")
    if raw is None:
        return None
    value = str(raw)
    return value if value.strip() else None


def require_id(listing_or_id: Any) -> str:
    value = listing_id(listing_or_id) if isinstance(listing_or_id, dict) else listing_or_id
    if value is None or not str(value).strip():
        raise InvalidMutation("listing id is required")
    return str(value)


@dataclass
class UpdateEvent:
    """One accepted mutation, as fanned out by the hub."""

    action: UpdateAction
    listing: Optional[Listing] = None
    listing_id: Optional[str] = None
    timestamp: str = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        self.action = UpdateAction.parse(self.action)
        if self.action is UpdateAction.DELETED:
            if self.listing_id is None and self.listing is not None:
                self.listing_id = listing_id(self.listing)
            self.listing_id = require_id(self.listing_id)
        else:
            if not isinstance(self.listing, dict):
                raise InvalidMutation(f"{self.action.value} event requires a listing")
            self.listing_id = require_id(self.listing)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": self.action.value, "timestamp": self.timestamp}
        if self.action is UpdateAction.DELETED:
            payload["listingId"] = self.listing_id
        else:
            payload["listing"] = self.listing
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> "UpdateEvent":
        if not isinstance(payload, dict):
            raise InvalidMutation("update event must be an object")
        return cls(
            action=payload.get("action"),
            listing=payload.get("listing"),
            listing_id=payload.get("listingId"),
            timestamp=str(payload.get("timestamp") or now_iso()),
        )


@dataclass
class QueueEntry:
    """A mutation that could not be sent live; removed once handed to the transport."""

    action: str
    payload: Any
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "localId": self.local_id,
            "action": self.action,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "QueueEntry":
        if not isinstance(raw, dict) or "action" not in raw:
            raise ValueError("queue entry must be an object with an action")
        return cls(
            action=str(raw["action"]),
            payload=raw.get("payload"),
            local_id=str(raw.get("localId") or uuid.uuid4().hex),
            timestamp=str(raw.get("timestamp") or now_iso()),
        )
