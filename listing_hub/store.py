from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from listing_core.types import Listing, listing_id, now_ms, require_id

log = logging.getLogger("listing_hub.store")


@dataclass
class ListingRecord:
    id: str
    data: Listing
    created_at: int
    updated_at: int
    seq: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "data": self.data,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "seq": self.seq,
        }


class ListingStore:
    """Canonical listing storage keyed by id.

    Subclasses persist through ``_commit``; a commit failure rolls back the
    in-memory change and propagates to the caller.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ListingRecord] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _commit(self) -> None:
        return None

    def get(self, lid: str) -> Optional[Listing]:
        with self._lock:
            rec = self._records.get(lid)
            return dict(rec.data) if rec is not None else None

    def exists(self, lid: str) -> bool:
        with self._lock:
            return lid in self._records

    def upsert(self, listing: Listing) -> bool:
        """Insert or replace by id. Returns True when the id was new."""
        lid = require_id(listing)
        with self._lock:
            previous = self._records.get(lid)
            ts = now_ms()
            if previous is None:
                rec = ListingRecord(lid, dict(listing), ts, ts, self._next_seq())
            else:
                rec = ListingRecord(lid, dict(listing), previous.created_at, ts, previous.seq)
            self._records[lid] = rec
            try:
                self._commit()
            except Exception:
                if previous is None:
                    self._records.pop(lid, None)
                else:
                    self._records[lid] = previous
                raise
            return previous is None

    def delete(self, lid: str) -> bool:
        with self._lock:
            previous = self._records.pop(lid, None)
            if previous is None:
                return False
            try:
                self._commit()
            except Exception:
                self._records[lid] = previous
                raise
            return True

    def list_all(self) -> List[Listing]:
        """All listings, newest-first by creation."""
        with self._lock:
            records = sorted(
                self._records.values(),
                key=lambda r: (r.created_at, r.seq),
                reverse=True,
            )
            return [dict(r.data) for r in records]


class MemoryListingStore(ListingStore):
    pass


class JsonFileListingStore(ListingStore):
    """Flat-file store; the whole document is rewritten atomically on each commit."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError):
            log.exception("Failed to load listings from %s; starting empty", self.path)
            return

        if isinstance(raw, list):
            # Plain newest-first list of listings (older file format).
            ts = now_ms()
            for item in reversed(raw):
                lid = listing_id(item)
                if lid is None or lid in self._records:
                    continue
                self._records[lid] = ListingRecord(lid, dict(item), ts, ts, self._next_seq())
            return

        for item in (raw or {}).get("listings", []):
            lid = item.get("id") if isinstance(item, dict) else None
            data = item.get("data") if isinstance(item, dict) else None
            if not lid or not isinstance(data, dict):
                continue
            seq = int(item.get("seq") or 0)
            self._seq = max(self._seq, seq)
            self._records[str(lid)] = ListingRecord(
                id=str(lid),
                data=data,
                created_at=int(item.get("created_at") or 0),
                updated_at=int(item.get("updated_at") or 0),
                seq=seq,
            )
        log.info("Loaded %d listings from %s", len(self._records), self.path)

    def _commit(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = {"version": 1, "listings": [r.to_dict() for r in self._records.values()]}
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(doc, fh, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)


def make_store(path: str | Path | None) -> ListingStore:
    if path:
        return JsonFileListingStore(Path(path))
    log.warning("No data file configured; listings are kept in memory only")
    return MemoryListingStore()
