from __future__ import annotations

import asyncio
import json
import os

import websockets


async def main() -> None:
    # Usage:
    # HUB_HOST=localhost HUB_PORT=8765 python ws_clients/listing_watch_client.py
    host = os.getenv("HUB_HOST", "localhost")
    port = os.getenv("HUB_PORT", "8765")

    url = f"ws://{host}:{port}/ws"
    print(f"Connecting to {url}")
    async with websockets.connect(url) as ws:
        print("Connected.")
        # An empty reconcile request makes the hub answer with the full collection.
        await ws.send(json.dumps({"type": "sync-listings", "ts_ms": 0, "data": []}))
        async for message in ws:
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                print(message)
                continue
            print(json.dumps(payload, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(main())
