from __future__ import annotations

import asyncio
import json

import listing_hub.ws_server as ws_server
from listing_core.protocols import encode_message
from listing_hub.hub import BroadcastHub
from listing_hub.store import MemoryListingStore
from tests._fakes import FakeHubClient


def _run_frames(frames, hub=None):
    hub = hub or BroadcastHub(MemoryListingStore())
    ws = FakeHubClient()

    async def scenario():
        await hub.register(ws)
        for frame in frames:
            await ws_server.handle_frame(hub, ws, frame)
        return await hub.get_all()

    return asyncio.run(scenario()), ws


def test_mutation_frames_route_to_hub_entry_points():
    listings, ws = _run_frames(
        [
            encode_message("listing-added", 1, {"id": "1", "title": "A"}),
            encode_message("listing-added", 2, {"id": "2"}),
            encode_message("listing-updated", 3, {"id": "1", "title": "A2"}),
            encode_message("listing-deleted", 4, "2"),
        ]
    )
    assert listings == [{"id": "1", "title": "A2"}]
    actions = [m["data"]["action"] for m in ws.of_type("update-listings")]
    assert actions == ["added", "added", "updated", "deleted"]


def test_sync_listings_frame_reconciles():
    listings, ws = _run_frames([encode_message("sync-listings", 1, [{"id": "9"}])])
    assert listings == [{"id": "9"}]
    assert ws.of_type("sync-all-listings")[0]["data"] == [{"id": "9"}]


def test_rejected_frames_answer_error_to_sender_only():
    listings, ws = _run_frames(
        [
            "{not json",
            json.dumps({"type": "listing-exploded", "data": {}}),
            encode_message("listing-added", 1, {"title": "missing id"}),
        ]
    )
    assert listings == []
    errors = ws.of_type("error")
    assert len(errors) == 3
    assert errors[1]["data"]["type"] == "listing-exploded"
    assert errors[2]["data"]["message"].startswith("invalid mutation")
    assert ws.of_type("update-listings") == []


def test_handler_registers_and_unregisters_connection():
    hub = BroadcastHub(MemoryListingStore())
    observer = FakeHubClient()

    class FakeConnection(FakeHubClient):
        def __init__(self, frames):
            super().__init__()
            self._frames = list(frames)
            self.request = type("Req", (), {"path": "/ws"})()

        def __aiter__(self):
            return self

        async def __anext__(self):
            if not self._frames:
                raise StopAsyncIteration
            return self._frames.pop(0)

    conn = FakeConnection([encode_message("listing-added", 1, {"id": "1"})])

    async def scenario():
        await hub.register(observer)
        await ws_server.make_handler(hub)(conn)

    asyncio.run(scenario())
    assert hub.clients_count == 1
    assert [m["data"] for m in observer.of_type("users-count")] == [1, 2, 1]
    assert observer.of_type("update-listings")[0]["data"]["listing"] == {"id": "1"}
