from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, Iterable, List, Protocol, Set

from listing_core.errors import InvalidMutation, PersistenceFailure
from listing_core.protocols import SYNC_ALL_LISTINGS, UPDATE_LISTINGS, USERS_COUNT, encode_message
from listing_core.types import Listing, UpdateAction, UpdateEvent, listing_id, now_ms, require_id

from listing_hub.store import ListingStore

log = logging.getLogger("listing_hub.hub")


class HubClient(Protocol):
    async def send(self, message: str) -> None: ...


class BroadcastHub:
    """Single source of truth for listings.

    Every mutation commits to the store before anything is broadcast; a failed
    commit raises PersistenceFailure and nothing is sent. Websocket and REST
    ingress share these entry points.
    """

    def __init__(self, store: ListingStore) -> None:
        self.store = store
        self._clients: Set[Any] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def clients_count(self) -> int:
        return len(self._clients)

    @contextlib.asynccontextmanager
    async def _lock_for(self, lid: str):
        lock = self._locks.get(lid)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[lid] = lock
        self._lock_users[lid] = self._lock_users.get(lid, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[lid] -= 1
            if not self._lock_users[lid]:
                del self._lock_users[lid]
                del self._locks[lid]

    async def register(self, client: HubClient) -> None:
        self._clients.add(client)
        log.info("Client connected (clients=%d)", len(self._clients))
        await self.broadcast(USERS_COUNT, len(self._clients))

    async def unregister(self, client: HubClient) -> None:
        if client not in self._clients:
            return
        self._clients.discard(client)
        log.info("Client disconnected (clients=%d)", len(self._clients))
        await self.broadcast(USERS_COUNT, len(self._clients))

    async def broadcast(self, msg_type: str, data: Any) -> None:
        if not self._clients:
            return
        message = encode_message(msg_type, now_ms(), data)
        targets = list(self._clients)
        results = await asyncio.gather(
            *(client.send(message) for client in targets),
            return_exceptions=True,
        )
        for client, result in zip(targets, results):
            if isinstance(result, Exception):
                log.warning("Dropping client after failed send of %s: %s", msg_type, result)
                self._clients.discard(client)

    async def _call_store(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except InvalidMutation:
            raise
        except Exception as exc:
            log.exception("Store %s failed", getattr(fn, "__name__", "call"))
            raise PersistenceFailure(str(exc)) from exc

    async def get_all(self) -> List[Listing]:
        return await self._call_store(self.store.list_all)

    async def upsert(self, listing: Listing) -> UpdateEvent:
        if not isinstance(listing, dict):
            raise InvalidMutation("listing must be an object")
        lid = require_id(listing)
        async with self._lock_for(lid):
            created = await self._call_store(self.store.upsert, listing)
        action = UpdateAction.ADDED if created else UpdateAction.UPDATED
        event = UpdateEvent(action=action, listing=dict(listing))
        log.info("Listing %s id=%s", action.value, lid)
        await self.broadcast(UPDATE_LISTINGS, event.to_payload())
        return event

    async def remove(self, lid: Any) -> UpdateEvent:
        lid = require_id(lid)
        async with self._lock_for(lid):
            existed = await self._call_store(self.store.delete, lid)
        event = UpdateEvent(action=UpdateAction.DELETED, listing_id=lid)
        log.info("Listing deleted id=%s existed=%s", lid, existed)
        await self.broadcast(UPDATE_LISTINGS, event.to_payload())
        return event

    async def reconcile(self, client_listings: Iterable[Listing] | None) -> List[Listing]:
        """Adopt client listings unknown to the store, then broadcast the full set.

        Hub-side listings missing from ``client_listings`` are left untouched.
        """
        if client_listings is not None and not isinstance(client_listings, (list, tuple)):
            raise InvalidMutation("sync payload must be a list of listings")
        adopted = 0
        for item in client_listings or []:
            lid = listing_id(item)
            if lid is None:
                continue
            async with self._lock_for(lid):
                if await self._call_store(self.store.exists, lid):
                    continue
                await self._call_store(self.store.upsert, item)
                adopted += 1
        listings = await self.get_all()
        if adopted:
            log.info("Reconcile adopted %d listing(s) (total=%d)", adopted, len(listings))
        await self.broadcast(SYNC_ALL_LISTINGS, listings)
        return listings
