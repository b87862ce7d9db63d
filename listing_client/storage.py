from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, List

from listing_core.types import Listing, QueueEntry

log = logging.getLogger("listing_client.storage")

LISTINGS_KEY = "listings"
QUEUE_KEY = "update_queue"


class ClientStorage:
    """Durable key/value documents for the client, one JSON file per key.

    Unreadable documents load as the default so a corrupt file never blocks startup.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError):
            log.warning("Discarding unreadable %s", path)
            return default

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(value, fh, ensure_ascii=False)
        os.replace(tmp, path)

    def load_listings(self) -> List[Listing]:
        raw = self.get(LISTINGS_KEY, [])
        return raw if isinstance(raw, list) else []

    def save_listings(self, listings: List[Listing]) -> None:
        self.set(LISTINGS_KEY, listings)

    def load_queue(self) -> List[QueueEntry]:
        raw = self.get(QUEUE_KEY, [])
        if not isinstance(raw, list):
            return []
        entries: List[QueueEntry] = []
        for item in raw:
            try:
                entries.append(QueueEntry.from_dict(item))
            except ValueError:
                log.warning("Skipping malformed queue entry: %r", item)
        return entries

    def save_queue(self, entries: List[QueueEntry]) -> None:
        self.set(QUEUE_KEY, [e.to_dict() for e in entries])
