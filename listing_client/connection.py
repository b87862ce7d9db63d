from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
import random
import ssl
import time
from enum import Enum
from typing import Any, Callable, Optional

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore

from listing_core.errors import TransportUnavailable
from listing_core.protocols import USERS_COUNT, encode_message, parse_message
from listing_core.types import now_ms


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class ConnectionManager:
    """Persistent websocket to the hub with unbounded, capped-backoff reconnects.

    Lifecycle callbacks run before the read loop starts, so ``on_connect`` can
    flush pending work ahead of any incoming frame.
    """

    def __init__(
        self,
        url: str,
        on_message: Optional[Callable[[str, Any], Any]] = None,
        on_connect: Optional[Callable[[], Any]] = None,
        on_disconnect: Optional[Callable[[], Any]] = None,
        on_reconnect: Optional[Callable[[], Any]] = None,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        insecure_tls: bool = False,
        ping_interval_s: int = 20,
        ping_timeout_s: int = 20,
        reconnect_backoff_s: float = 1.0,
        reconnect_backoff_max_s: float = 5.0,
        open_timeout_s: float = 10.0,
        recv_poll_timeout_s: float = 5.0,
    ):
        self.url = url
        self.on_message_cb = on_message
        self.on_connect_cb = on_connect
        self.on_disconnect_cb = on_disconnect
        self.on_reconnect_cb = on_reconnect
        self.on_status_cb = on_status
        self.insecure_tls = insecure_tls

        self.ping_interval_s = max(0, int(ping_interval_s))
        self.ping_timeout_s = max(1, int(ping_timeout_s))
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.open_timeout_s = max(0.1, float(open_timeout_s))
        self.recv_poll_timeout_s = max(0.01, float(recv_poll_timeout_s))

        self._ws = None
        self._stop = False
        self._status = ConnectionStatus.DISCONNECTED
        self._users_count: Optional[int] = None
        self._connect_count = 0
        self._log = logging.getLogger("websocket")
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED and self._ws is not None

    @property
    def users_count(self) -> Optional[int]:
        return self._users_count

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        try:
            if self.on_status_cb:
                self.on_status_cb(status)
        except Exception:
            self._log.exception("Status callback error (status=%s)", status.value)

    async def _invoke(self, name: str, cb: Optional[Callable[..., Any]], *args: Any) -> None:
        if cb is None:
            return
        try:
            await _maybe_await(cb(*args))
        except Exception:
            self._log.exception("%s callback error", name)

    async def send(self, msg_type: str, data: Any) -> None:
        ws = self._ws
        if ws is None or not self.connected:
            raise TransportUnavailable("not connected")
        try:
            await ws.send(encode_message(msg_type, now_ms(), data))
        except Exception as exc:
            raise TransportUnavailable(f"send {msg_type} failed: {exc}") from exc

    async def _ping_loop(self) -> None:
        if self.ping_interval_s <= 0 or self._ws is None:
            return
        while not self._stop:
            await asyncio.sleep(self.ping_interval_s)
            if self._stop or self._ws is None:
                return
            try:
                pong_waiter = await self._ws.ping(os.urandom(4))
                await asyncio.wait_for(pong_waiter, timeout=self.ping_timeout_s)
            except Exception as exc:
                self._log.warning("Ping timeout: %s", exc)
                with contextlib.suppress(Exception):
                    await self._ws.close()
                return

    async def _handle_frame(self, raw: Any) -> None:
        try:
            msg_type, data = parse_message(raw)
        except ValueError:
            self._log.exception("Failed to parse WS message")
            return
        if msg_type == USERS_COUNT:
            try:
                self._users_count = int(data)
            except (TypeError, ValueError):
                self._log.warning("Ignoring bad users-count payload: %r", data)
        await self._invoke("Message", self.on_message_cb, msg_type, data)

    async def _read_loop(self) -> None:
        assert self._ws is not None
        while not self._stop:
            try:
                msg = await asyncio.wait_for(self._ws.recv(), timeout=self.recv_poll_timeout_s)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                self._log.info("WS closed code=%s reason=%s", getattr(exc, "code", None), exc)
                return
            if msg is None:
                return
            await self._handle_frame(msg)

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.insecure_tls:
            return None
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _backoff(self, failures: int) -> float:
        base = self.reconnect_backoff_s
        cap = self.reconnect_backoff_max_s
        if base <= 0.0 or cap <= 0.0:
            return 0.0
        backoff = min(cap, base * (2 ** max(0, failures - 1)))
        return min(cap, backoff * (0.7 + 0.6 * random.random()))

    async def connect(self, url: Optional[str] = None) -> None:
        """Connect and keep reconnecting until ``close()``."""
        if url:
            self.url = url
        self._loop = asyncio.get_running_loop()
        self._stop = False
        failures = 0

        while not self._stop:
            self._set_status(ConnectionStatus.CONNECTING)
            connect_kwargs = {
                "ping_interval": None,
                "ping_timeout": None,
                "close_timeout": 5,
                "open_timeout": self.open_timeout_s,
            }
            ssl_ctx = self._ssl_context()
            if ssl_ctx is not None:
                connect_kwargs["ssl"] = ssl_ctx
            session_t0 = time.monotonic()
            was_connected = False
            try:
                async with ws_connect(self.url, **connect_kwargs) as ws:
                    self._ws = ws
                    was_connected = True
                    failures = 0
                    self._connect_count += 1
                    self._set_status(ConnectionStatus.CONNECTED)
                    self._log.info("WS connected url=%s (connection #%d)", self.url, self._connect_count)
                    await self._invoke("Connect", self.on_connect_cb)
                    if self._connect_count > 1:
                        await self._invoke("Reconnect", self.on_reconnect_cb)

                    ping_task = asyncio.create_task(self._ping_loop())
                    try:
                        await self._read_loop()
                    finally:
                        ping_task.cancel()
                        with contextlib.suppress(asyncio.CancelledError, Exception):
                            await ping_task
                self._ws = None
                self._set_status(ConnectionStatus.DISCONNECTED)
            except Exception as exc:
                self._ws = None
                self._set_status(ConnectionStatus.ERROR)
                self._log.warning("WS connection error: %s", exc)
            finally:
                self._ws = None

            if was_connected:
                self._log.info("WS session lasted %.1fs", time.monotonic() - session_t0)
                await self._invoke("Disconnect", self.on_disconnect_cb)
            if self._stop:
                break

            failures += 1
            backoff = self._backoff(failures)
            self._log.info("Reconnecting in %.2fs (attempt %d)", backoff, failures)
            await asyncio.sleep(backoff)

        self._set_status(ConnectionStatus.DISCONNECTED)

    def run(self) -> None:
        """Run the connection loop until ``close()``."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            raise RuntimeError("ConnectionManager.run() cannot be called from an active event loop.")
        asyncio.run(self.connect())

    def close(self) -> None:
        self._stop = True
        ws = self._ws
        if ws is None:
            return
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(ws.close())
            return
        except RuntimeError:
            loop = self._loop
        if loop and loop.is_running():
            asyncio.run_coroutine_threadsafe(ws.close(), loop)
