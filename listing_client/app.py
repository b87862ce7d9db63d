from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from listing_core.logging_config import setup_logging

from listing_client import settings
from listing_client.connection import ConnectionManager, ConnectionStatus
from listing_client.storage import ClientStorage
from listing_client.sync_engine import SyncEngine

log = logging.getLogger("listing_client.app")


def build_client(
    url: Optional[str] = None,
    storage_dir: str | Path | None = None,
) -> Tuple[SyncEngine, ConnectionManager]:
    """Wire a SyncEngine to a ConnectionManager; the engine is loaded from storage."""
    engine = SyncEngine(ClientStorage(storage_dir or settings.CLIENT_STORAGE_DIR))
    engine.load()

    def _on_status(status: ConnectionStatus) -> None:
        if status is ConnectionStatus.CONNECTED:
            log.info("Connected")
        elif status is ConnectionStatus.DISCONNECTED:
            log.info("Offline, sync paused (pending=%d)", len(engine.pending()))
        elif status is ConnectionStatus.ERROR:
            log.warning("Connection error")

    conn = ConnectionManager(
        url or settings.HUB_WS_URL,
        on_message=engine.on_remote_message,
        on_connect=engine.on_reconnected,
        on_disconnect=engine.on_disconnected,
        on_reconnect=lambda: log.info("Reconnected to hub"),
        on_status=_on_status,
        insecure_tls=settings.INSECURE_TLS,
        ping_interval_s=settings.WS_PING_INTERVAL_S,
        ping_timeout_s=settings.WS_PING_TIMEOUT_S,
        reconnect_backoff_s=settings.WS_RECONNECT_BACKOFF_S,
        reconnect_backoff_max_s=settings.WS_RECONNECT_BACKOFF_MAX_S,
        open_timeout_s=settings.WS_OPEN_TIMEOUT_S,
    )
    engine.transport = conn
    return engine, conn


def main() -> None:
    log_path = setup_logging(level="INFO", component="client")
    log.info("Client logging to %s", log_path)
    engine, conn = build_client()
    log.info("Syncing with %s (%d listings cached)", conn.url, len(engine.listings()))
    try:
        conn.run()
    except KeyboardInterrupt:
        conn.close()


if __name__ == "__main__":
    main()
