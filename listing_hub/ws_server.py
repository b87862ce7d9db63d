from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

import websockets

from listing_core.errors import InvalidMutation, PersistenceFailure
from listing_core.protocols import (
    ERROR,
    LISTING_ADDED,
    LISTING_DELETED,
    LISTING_UPDATED,
    SYNC_LISTINGS,
    encode_message,
    parse_message,
)
from listing_core.types import now_ms

from listing_hub.hub import BroadcastHub

log = logging.getLogger("listing_hub.ws")


def _get_path(ws: Any) -> str:
    req = getattr(ws, "request", None)
    if req is not None and hasattr(req, "path"):
        return req.path
    return getattr(ws, "path", "")


async def _send_error(ws: Any, msg_type: str, message: str) -> None:
    await ws.send(encode_message(ERROR, now_ms(), {"type": msg_type, "message": message}))


def make_dispatch(hub: BroadcastHub) -> Dict[str, Callable[[Any], Awaitable[Any]]]:
    return {
        LISTING_ADDED: hub.upsert,
        LISTING_UPDATED: hub.upsert,
        LISTING_DELETED: hub.remove,
        SYNC_LISTINGS: hub.reconcile,
    }


async def handle_frame(hub: BroadcastHub, ws: Any, raw: str | bytes, dispatch=None) -> None:
    dispatch = dispatch or make_dispatch(hub)
    try:
        msg_type, data = parse_message(raw)
    except ValueError as exc:
        await _send_error(ws, "", str(exc))
        return
    handler = dispatch.get(msg_type)
    if handler is None:
        await _send_error(ws, msg_type, "unsupported message type")
        return
    try:
        await handler(data)
    except InvalidMutation as exc:
        log.warning("Rejected %s: %s", msg_type, exc)
        await _send_error(ws, msg_type, f"invalid mutation: {exc}")
    except PersistenceFailure as exc:
        log.error("Store failed for %s: %s", msg_type, exc)
        await _send_error(ws, msg_type, f"persistence failure: {exc}")


def make_handler(hub: BroadcastHub):
    dispatch = make_dispatch(hub)

    async def _handler(ws: Any) -> None:
        log.info("Client connected path=%s", _get_path(ws) or "/")
        await hub.register(ws)
        try:
            async for raw in ws:
                await handle_frame(hub, ws, raw, dispatch)
        except websockets.ConnectionClosed:
            pass
        finally:
            await hub.unregister(ws)

    return _handler
