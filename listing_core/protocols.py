from __future__ import annotations

import json
from typing import Any, Dict, Tuple

# client -> hub
LISTING_ADDED = "listing-added"
LISTING_UPDATED = "listing-updated"
LISTING_DELETED = "listing-deleted"
SYNC_LISTINGS = "sync-listings"

# hub -> clients
UPDATE_LISTINGS = "update-listings"
SYNC_ALL_LISTINGS = "sync-all-listings"
USERS_COUNT = "users-count"
ERROR = "error"

MUTATION_TYPES = (LISTING_ADDED, LISTING_UPDATED, LISTING_DELETED)


def make_message(msg_type: str, ts_ms: int, data: Any) -> Dict[str, Any]:
    return {
        "type": msg_type,
        "ts_ms": ts_ms,
        "data": data,
    }


def encode_message(msg_type: str, ts_ms: int, data: Any) -> str:
    return json.dumps(make_message(msg_type, ts_ms, data), ensure_ascii=False, default=str)


def parse_message(raw: str | bytes) -> Tuple[str, Any]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"malformed frame: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("frame must be a JSON object")
    msg_type = payload.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ValueError("frame missing type")
    return msg_type, payload.get("data")
