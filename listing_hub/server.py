from __future__ import annotations

import asyncio
import logging
import threading

import websockets

from listing_core.logging_config import setup_logging
from listing_hub import settings
from listing_hub.hub import BroadcastHub
from listing_hub.rest import make_server
from listing_hub.store import make_store
from listing_hub.ws_server import make_handler

log = logging.getLogger("listing_hub.server")


async def _run_server(hub: BroadcastHub) -> None:
    loop = asyncio.get_running_loop()
    httpd = make_server(hub, loop, settings.HUB_REST_HOST, settings.HUB_REST_PORT)
    rest_thread = threading.Thread(target=httpd.serve_forever, name="listings-rest", daemon=True)
    rest_thread.start()
    log.info("REST API listening on http://%s:%s/api/listings", settings.HUB_REST_HOST, settings.HUB_REST_PORT)
    try:
        async with websockets.serve(make_handler(hub), settings.HUB_WS_HOST, settings.HUB_WS_PORT):
            log.info("WS hub listening on ws://%s:%s/ws", settings.HUB_WS_HOST, settings.HUB_WS_PORT)
            await asyncio.Future()
    finally:
        httpd.shutdown()
        httpd.server_close()


def main() -> None:
    log_path = setup_logging(level=settings.HUB_LOG_LEVEL, component="hub")
    log.info("Hub logging to %s", log_path)
    if settings.ADMIN_PASSWORD == settings.DEFAULT_ADMIN_PASSWORD:
        log.warning("ADMIN_PASSWORD not set; using the insecure default password")

    store = make_store(settings.HUB_DATA_FILE)
    log.info("Store: %s (%d listings)", type(store).__name__, len(store.list_all()))
    hub = BroadcastHub(store)
    try:
        asyncio.run(_run_server(hub))
    except KeyboardInterrupt:
        log.info("Hub stopped")


if __name__ == "__main__":
    main()
