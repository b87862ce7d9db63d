from __future__ import annotations

from typing import Callable, Dict, Iterable, Iterator, List, Optional

from .types import Listing, UpdateAction, UpdateEvent, listing_id


class ListingCollection:
    """Ordered, id-unique listing cache with idempotent merge rules.

    I/O-free; callers own persistence. Order is newest-first for listings
    inserted through ``added``; in-place replacements keep their position.
    """

    def __init__(self, listings: Optional[Iterable[Listing]] = None) -> None:
        self._items: List[Listing] = []
        self._handlers: Dict[UpdateAction, Callable[[UpdateEvent], bool]] = {
            UpdateAction.ADDED: self._on_added,
            UpdateAction.UPDATED: self._on_updated,
            UpdateAction.DELETED: self._on_deleted,
        }
        if listings is not None:
            self.replace_all(listings)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Listing]:
        return iter(list(self._items))

    def _index(self, lid: str) -> int:
        for idx, item in enumerate(self._items):
            if listing_id(item) == lid:
                return idx
        return -1

    def get(self, lid: str) -> Optional[Listing]:
        idx = self._index(lid)
        return dict(self._items[idx]) if idx != -1 else None

    def ids(self) -> List[str]:
        return [listing_id(item) for item in self._items]

    def to_list(self) -> List[Listing]:
        return [dict(item) for item in self._items]

    def replace_all(self, listings: Iterable[Listing]) -> None:
        seen = set()
        items: List[Listing] = []
        for item in listings or []:
            lid = listing_id(item)
            if lid is None or lid in seen:
                continue
            seen.add(lid)
            items.append(dict(item))
        self._items = items

    def apply_event(self, event: UpdateEvent) -> bool:
        """Apply one update event; returns True when the collection changed."""
        return self._handlers[event.action](event)

    def _on_added(self, event: UpdateEvent) -> bool:
        if self._index(event.listing_id) != -1:
            return False
        self._items.insert(0, dict(event.listing))
        return True

    def _on_updated(self, event: UpdateEvent) -> bool:
        idx = self._index(event.listing_id)
        if idx == -1:
            return False
        self._items[idx] = dict(event.listing)
        return True

    def _on_deleted(self, event: UpdateEvent) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if listing_id(item) != event.listing_id]
        return len(self._items) != before
