from __future__ import annotations

import asyncio
from pathlib import Path

from listing_client.storage import ClientStorage
from listing_client.sync_engine import SyncEngine
from listing_core.types import QueueEntry
from listing_hub.hub import BroadcastHub
from listing_hub.store import MemoryListingStore
from tests._fakes import LoopbackTransport


class RecordingHub(BroadcastHub):
    def __init__(self, store):
        super().__init__(store)
        self.calls = []

    async def upsert(self, listing):
        self.calls.append(("upsert", listing.get("id") if isinstance(listing, dict) else None))
        return await super().upsert(listing)

    async def remove(self, lid):
        self.calls.append(("remove", lid))
        return await super().remove(lid)

    async def reconcile(self, client_listings):
        self.calls.append(("reconcile", len(client_listings or [])))
        return await super().reconcile(client_listings)


def _client(hub, tmp_path: Path, name: str, **kwargs):
    transport = LoopbackTransport(hub, **kwargs)
    engine = SyncEngine(ClientStorage(tmp_path / name), transport)
    engine.load()
    return engine, transport


async def _reconnect(engine, transport):
    await transport.connect()
    await engine.on_reconnected()


def test_hub_sees_queued_mutations_before_reconcile(tmp_path: Path):
    hub = RecordingHub(MemoryListingStore())
    engine, transport = _client(hub, tmp_path, "a")

    async def scenario():
        await engine.apply_local_mutation("added", {"id": "1"})
        await engine.apply_local_mutation("added", {"id": "2"})
        await _reconnect(engine, transport)

    asyncio.run(scenario())
    assert hub.calls == [("upsert", "1"), ("upsert", "2"), ("reconcile", 2)]


def test_two_offline_clients_converge(tmp_path: Path):
    hub = BroadcastHub(MemoryListingStore())
    a, ta = _client(hub, tmp_path, "a")
    b, tb = _client(hub, tmp_path, "b")

    async def scenario():
        await a.apply_local_mutation("added", {"id": "X", "title": "from A"})
        await b.apply_local_mutation("added", {"id": "Y", "title": "from B"})
        await _reconnect(a, ta)
        ta.deliver(a)
        await _reconnect(b, tb)
        ta.deliver(a)
        tb.deliver(b)
        return await hub.get_all()

    canonical = asyncio.run(scenario())
    assert sorted(item["id"] for item in canonical) == ["X", "Y"]
    assert a.listings() == canonical
    assert b.listings() == canonical
    assert a.pending() == [] and b.pending() == []


def test_reconcile_adopts_offline_listing_whose_queue_was_lost(tmp_path: Path):
    hub = BroadcastHub(MemoryListingStore())
    engine, transport = _client(hub, tmp_path, "a")
    # Local state only: nothing queued, e.g. the queue file was cleared.
    engine.apply_local("added", {"id": "X"})

    async def scenario():
        await _reconnect(engine, transport)
        transport.deliver(engine)
        return await hub.get_all()

    assert asyncio.run(scenario()) == [{"id": "X"}]
    assert engine.listings() == [{"id": "X"}]
    assert engine.reconcile_pending is False


def test_queued_delete_is_replayed_on_reconnect(tmp_path: Path):
    hub = BroadcastHub(MemoryListingStore())
    engine, transport = _client(hub, tmp_path, "a")

    async def scenario():
        await _reconnect(engine, transport)
        await engine.apply_local_mutation("added", {"id": "1", "title": "A"})
        transport.deliver(engine)
        await transport.disconnect()

        await engine.apply_local_mutation("deleted", "1")
        assert [e.action for e in engine.pending()] == ["listing-deleted"]

        await _reconnect(engine, transport)
        transport.deliver(engine)
        return await hub.get_all()

    assert asyncio.run(scenario()) == []
    assert engine.pending() == []
    assert engine.listings() == []


def test_resent_added_after_partial_drain_does_not_duplicate(tmp_path: Path):
    hub = BroadcastHub(MemoryListingStore())
    engine, transport = _client(hub, tmp_path, "a", fail_after=1)

    async def scenario():
        await engine.apply_local_mutation("added", {"id": "1"})
        await engine.apply_local_mutation("added", {"id": "2"})
        await _reconnect(engine, transport)
        assert [e.payload["id"] for e in engine.pending()] == ["2"]

        # Replay everything, including an added the hub has already applied.
        transport.fail_after = None
        engine._queue.insert(0, QueueEntry(action="listing-added", payload={"id": "1"}))
        await _reconnect(engine, transport)
        transport.deliver(engine)
        return await hub.get_all()

    canonical = asyncio.run(scenario())
    assert sorted(item["id"] for item in canonical) == ["1", "2"]
    assert sorted(engine.collection.ids()) == ["1", "2"]
    assert engine.pending() == []


def test_live_edits_fan_out_to_peers(tmp_path: Path):
    hub = BroadcastHub(MemoryListingStore())
    a, ta = _client(hub, tmp_path, "a")
    b, tb = _client(hub, tmp_path, "b")

    async def scenario():
        await _reconnect(a, ta)
        await _reconnect(b, tb)
        ta.deliver(a)
        tb.deliver(b)
        await a.apply_local_mutation("added", {"id": "1", "title": "A"})
        await a.apply_local_mutation("updated", {"id": "1", "title": "A2"})
        tb.deliver(b)
        ta.deliver(a)
        await b.apply_local_mutation("deleted", "1")
        ta.deliver(a)
        tb.deliver(b)

    asyncio.run(scenario())
    assert a.listings() == []
    assert b.listings() == []
    assert b.users_count == 2
