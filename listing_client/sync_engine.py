from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from listing_core.collection import ListingCollection
from listing_core.errors import InvalidMutation, TransportUnavailable
from listing_core.protocols import ERROR, SYNC_ALL_LISTINGS, SYNC_LISTINGS, UPDATE_LISTINGS, USERS_COUNT
from listing_core.types import Listing, QueueEntry, UpdateAction, UpdateEvent, require_id

from listing_client.storage import ClientStorage

log = logging.getLogger("listing_client.sync")


class Transport(Protocol):
    @property
    def connected(self) -> bool: ...

    async def send(self, msg_type: str, data: Any) -> None: ...


class SyncEngine:
    """Client-side owner of the local collection and the offline update queue.

    Mutations are two-phase: ``apply_local`` changes local state immediately,
    ``transmit`` sends the event or queues it when the transport is down.
    Queue entries leave the queue only after the transport accepted them.
    """

    def __init__(self, storage: ClientStorage, transport: Optional[Transport] = None) -> None:
        self.storage = storage
        self.transport = transport
        self.collection = ListingCollection()
        self.users_count: Optional[int] = None
        self._queue: List[QueueEntry] = []
        self._draining = False
        self._rerun = False
        self._reconcile_pending = False
        self._dispatch: Dict[str, Callable[[Any], Any]] = {
            UPDATE_LISTINGS: self.on_remote_event,
            SYNC_ALL_LISTINGS: self.on_sync_all,
            USERS_COUNT: self._on_users_count,
            ERROR: self._on_hub_error,
        }

    def load(self) -> None:
        self.collection.replace_all(self.storage.load_listings())
        self._queue = self.storage.load_queue()
        log.info("Loaded %d listings, %d queued update(s)", len(self.collection), len(self._queue))

    @property
    def connected(self) -> bool:
        return self.transport is not None and bool(self.transport.connected)

    @property
    def reconcile_pending(self) -> bool:
        return self._reconcile_pending

    def listings(self) -> List[Listing]:
        return self.collection.to_list()

    def pending(self) -> List[QueueEntry]:
        return list(self._queue)

    def _save_listings(self) -> None:
        self.storage.save_listings(self.collection.to_list())

    def _save_queue(self) -> None:
        self.storage.save_queue(self._queue)

    # phase 1

    def apply_local(self, action: str | UpdateAction, listing_or_id: Any) -> Tuple[str, Any]:
        """Apply a local mutation optimistically; returns the (msg_type, payload) to send."""
        action = UpdateAction.parse(action)
        if action is UpdateAction.DELETED:
            lid = require_id(listing_or_id)
            self.collection.apply_event(UpdateEvent(action=action, listing_id=lid))
            payload: Any = lid
        else:
            if not isinstance(listing_or_id, dict):
                raise InvalidMutation(f"{action.value} requires a listing")
            require_id(listing_or_id)
            listing = dict(listing_or_id)
            # Local writes are upserts: the local user always sees their own edit.
            if not self.collection.apply_event(UpdateEvent(action=UpdateAction.UPDATED, listing=listing)):
                self.collection.apply_event(UpdateEvent(action=UpdateAction.ADDED, listing=listing))
            payload = listing
        self._save_listings()
        return action.msg_type, payload

    # phase 2

    def _enqueue(self, msg_type: str, payload: Any) -> QueueEntry:
        entry = QueueEntry(action=msg_type, payload=payload)
        self._queue.append(entry)
        self._save_queue()
        log.info("Queued %s while offline (pending=%d)", msg_type, len(self._queue))
        return entry

    async def transmit(self, msg_type: str, payload: Any) -> bool:
        """Send live when possible, otherwise queue. Returns True when sent live."""
        if not self.connected:
            self._enqueue(msg_type, payload)
            return False
        if self._queue:
            # Keep enqueue order: earlier offline writes must reach the hub first.
            self._enqueue(msg_type, payload)
            return await self._flush(reconcile=False)
        try:
            await self.transport.send(msg_type, payload)
        except TransportUnavailable as exc:
            log.warning("Live send failed, queueing %s: %s", msg_type, exc)
            self._enqueue(msg_type, payload)
            return False
        return True

    async def apply_local_mutation(self, action: str | UpdateAction, listing_or_id: Any) -> bool:
        msg_type, payload = self.apply_local(action, listing_or_id)
        return await self.transmit(msg_type, payload)

    # remote events

    def on_remote_event(self, event: UpdateEvent | Dict[str, Any]) -> bool:
        if not isinstance(event, UpdateEvent):
            event = UpdateEvent.from_payload(event)
        changed = self.collection.apply_event(event)
        if changed:
            self._save_listings()
        return changed

    def on_sync_all(self, listings: Any) -> None:
        if not isinstance(listings, list):
            raise InvalidMutation("sync-all-listings payload must be a list")
        self.collection.replace_all(listings)
        self._reconcile_pending = False
        self._save_listings()
        log.info("Replaced local collection with %d canonical listings", len(self.collection))

    def _on_users_count(self, count: Any) -> None:
        try:
            self.users_count = int(count)
        except (TypeError, ValueError):
            log.warning("Ignoring bad users-count payload: %r", count)

    def _on_hub_error(self, data: Any) -> None:
        log.warning("Hub rejected message: %s", data)

    def on_remote_message(self, msg_type: str, data: Any) -> None:
        handler = self._dispatch.get(msg_type)
        if handler is None:
            log.debug("Ignoring message type %s", msg_type)
            return
        try:
            handler(data)
        except InvalidMutation as exc:
            log.warning("Dropping malformed %s: %s", msg_type, exc)

    # reconnect protocol

    async def _drain_queue(self) -> bool:
        """Resend queued entries in order. Returns False if the transport failed mid-drain."""
        sent = 0
        while self._queue:
            entry = self._queue[0]
            try:
                await self.transport.send(entry.action, entry.payload)
            except TransportUnavailable as exc:
                log.warning("Drain stopped after %d entries, %d left: %s", sent, len(self._queue), exc)
                return False
            self._queue.pop(0)
            self._save_queue()
            sent += 1
        if sent:
            log.info("%d offline change(s) synced", sent)
        return True

    async def _flush(self, reconcile: bool) -> bool:
        """Drain the queue and optionally send a reconcile request.

        Only one flush runs at a time; a reconcile requested meanwhile makes the
        running flush loop once more.
        """
        if self._draining:
            if reconcile:
                self._rerun = True
            return False
        self._draining = True
        try:
            while True:
                self._rerun = False
                if not await self._drain_queue():
                    return False
                if reconcile:
                    try:
                        await self.transport.send(SYNC_LISTINGS, self.collection.to_list())
                    except TransportUnavailable as exc:
                        log.warning("Reconcile request failed: %s", exc)
                        return False
                    self._reconcile_pending = True
                if not self._rerun:
                    return True
                reconcile = True
        finally:
            self._draining = False

    async def on_reconnected(self) -> None:
        """Drain the queue, then ask the hub to reconcile the local collection.

        The hub answers with ``sync-all-listings``, handled by ``on_sync_all``.
        """
        if self.transport is None:
            return
        await self._flush(reconcile=True)

    def on_disconnected(self) -> None:
        self._reconcile_pending = False
        if self._queue:
            log.info("Disconnected with %d queued update(s)", len(self._queue))
