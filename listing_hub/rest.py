from __future__ import annotations

import asyncio
import hmac
import json
import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional, Sequence
from urllib.parse import unquote, urlparse

from listing_core.errors import InvalidMutation, PersistenceFailure, Unauthorized

from listing_hub import settings
from listing_hub.hub import BroadcastHub

log = logging.getLogger("listing_hub.rest")

LISTINGS_PATH = "/api/listings"
LOGIN_PATH = "/api/admin/login"


class _HubTimeout(Exception):
    pass


def check_password(candidate: Any, expected: str) -> bool:
    if not isinstance(candidate, str) or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class ListingsRequestHandler(BaseHTTPRequestHandler):
    """REST surface over the hub. Bound to a hub and its loop by ``make_server``."""

    hub: BroadcastHub
    loop: asyncio.AbstractEventLoop
    admin_password: str = settings.ADMIN_PASSWORD
    allowed_origins: Sequence[str] = ()
    call_timeout_s: float = settings.HUB_CALL_TIMEOUT_S
    max_body_bytes: int = settings.HUB_MAX_BODY_BYTES

    def _call_hub(self, coro):
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return fut.result(timeout=self.call_timeout_s)
        except FutureTimeoutError as exc:
            fut.cancel()
            raise _HubTimeout() from exc

    def _listing_id_from_path(self, path: str) -> Optional[str]:
        prefix = LISTINGS_PATH + "/"
        if not path.startswith(prefix):
            return None
        lid = unquote(path[len(prefix):]).strip("/")
        return lid or None

    def _read_json(self) -> Any:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError as exc:
            raise InvalidMutation("invalid Content-Length") from exc
        if length > self.max_body_bytes:
            raise InvalidMutation("request body too large")
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidMutation(f"invalid JSON body: {exc}") from exc

    def _require_admin(self) -> None:
        if not check_password(self.headers.get("x-admin-token"), self.admin_password):
            raise Unauthorized("Unauthorized")

    def _dispatch(self, method: str) -> None:
        path = urlparse(self.path).path.rstrip("/") or "/"
        lid = self._listing_id_from_path(path)
        try:
            if method == "GET" and path == LISTINGS_PATH:
                self._send_json(200, self._call_hub(self.hub.get_all()))
            elif method == "POST" and path == LOGIN_PATH:
                body = self._read_json() or {}
                password = body.get("password") if isinstance(body, dict) else None
                if not check_password(password, self.admin_password):
                    self._send_json(401, {"error": "Incorrect password"})
                    return
                self._send_json(200, {"ok": True})
            elif method == "POST" and path == LISTINGS_PATH:
                self._require_admin()
                listing = self._read_json()
                if not isinstance(listing, dict) or not listing.get("id"):
                    raise InvalidMutation("Invalid listing")
                event = self._call_hub(self.hub.upsert(listing))
                self._send_json(200, {"ok": True, "listing": event.listing})
            elif method == "PUT" and lid:
                self._require_admin()
                fields = self._read_json()
                if not isinstance(fields, dict):
                    raise InvalidMutation("listing fields must be an object")
                event = self._call_hub(self.hub.upsert({**fields, "id": lid}))
                self._send_json(200, {"ok": True, "listing": event.listing})
            elif method == "DELETE" and lid:
                self._require_admin()
                self._call_hub(self.hub.remove(lid))
                self._send_json(200, {"ok": True})
            else:
                self._send_json(404, {"error": "not_found"})
        except Unauthorized:
            self._send_json(401, {"error": "Unauthorized"})
        except InvalidMutation as exc:
            self._send_json(400, {"error": str(exc)})
        except PersistenceFailure as exc:
            self._send_json(500, {"error": f"persistence_failure: {exc}"})
        except _HubTimeout:
            log.error("Hub call timed out after %.1fs (%s %s)", self.call_timeout_s, method, path)
            self._send_json(504, {"error": "hub_timeout"})

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_PUT(self) -> None:
        self._dispatch("PUT")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    def do_OPTIONS(self) -> None:
        self.send_response(200)
        self._send_cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args) -> None:  # noqa: A003
        log.debug("%s - %s", self.address_string(), format % args)

    def _send_cors_headers(self) -> None:
        origin = self.headers.get("Origin")
        if origin and origin in self.allowed_origins:
            self.send_header("Access-Control-Allow-Origin", origin)
        self.send_header("Access-Control-Allow-Methods", "GET,POST,PUT,DELETE,OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type,x-admin-token")

    def _send_json(self, status: int, payload: Any) -> None:
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(body)


def make_server(
    hub: BroadcastHub,
    loop: asyncio.AbstractEventLoop,
    host: str,
    port: int,
    *,
    admin_password: str | None = None,
    allowed_origins: Sequence[str] | None = None,
    call_timeout_s: float | None = None,
) -> ThreadingHTTPServer:
    origins = settings.ALLOWED_ORIGINS if allowed_origins is None else allowed_origins
    handler = type(
        "BoundListingsRequestHandler",
        (ListingsRequestHandler,),
        {
            "hub": hub,
            "loop": loop,
            "admin_password": admin_password or settings.ADMIN_PASSWORD,
            "allowed_origins": tuple(origins),
            "call_timeout_s": settings.HUB_CALL_TIMEOUT_S if call_timeout_s is None else float(call_timeout_s),
        },
    )
    return ThreadingHTTPServer((host, port), handler)
