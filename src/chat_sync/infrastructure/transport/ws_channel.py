"""Persistent WebSocket channel with library-driven reconnects."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from chat_sync.application.ports.transport import EventHandler, LifecycleCallback
from chat_sync.config import settings
from chat_sync.infrastructure.transport.protocol import decode_frame, encode_frame

logger = logging.getLogger(__name__)


def with_token(url: str, token: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode({'token': token})}"


class WebSocketChannel:
    """Implements application.ports.transport.Transport.

    Reconnection is delegated to ``websockets``' own retry iterator, which
    backs off exponentially on failed attempts. Every fresh connection fires
    the ``on_connect`` callbacks; the server keeps no room membership across
    connections.
    """

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = settings.WS_OPEN_TIMEOUT_SECONDS,
        ping_interval: float = settings.WS_PING_INTERVAL_SECONDS,
    ) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._handlers: dict[str, list[EventHandler]] = {}
        self._connect_callbacks: list[LifecycleCallback] = []
        self._disconnect_callbacks: list[LifecycleCallback] = []
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._connected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def on_connect(self, callback: LifecycleCallback) -> None:
        self._connect_callbacks.append(callback)

    def on_disconnect(self, callback: LifecycleCallback) -> None:
        self._disconnect_callbacks.append(callback)

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="chat-channel")
        logger.info("Chat channel starting")

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def disconnect(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Chat channel stopped")

    def send(self, event: str, payload: dict[str, Any]) -> None:
        if self._outbox is None:
            logger.debug("Dropping %s: channel not connected", event)
            return
        self._outbox.put_nowait(encode_frame(event, payload))

    async def _run(self) -> None:
        try:
            async for ws in connect(
                self._url,
                open_timeout=self._open_timeout,
                ping_interval=self._ping_interval,
            ):
                await self._serve(ws)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Chat channel gave up reconnecting")

    async def _serve(self, ws: ClientConnection) -> None:
        outbox: asyncio.Queue[str] = asyncio.Queue()
        pump = asyncio.create_task(self._pump(ws, outbox), name="chat-channel-pump")
        self._ws, self._outbox = ws, outbox
        self._connected.set()
        logger.info("Chat channel connected")
        try:
            await self._fire(self._connect_callbacks)
            await self._read_loop(ws)
            logger.info("Chat channel closed by server, reconnecting")
        except ConnectionClosed:
            logger.info("Chat channel lost, reconnecting")
        finally:
            pump.cancel()
            self._ws, self._outbox = None, None
            self._connected.clear()
            await ws.close()
            await self._fire(self._disconnect_callbacks)

    async def _read_loop(self, ws: ClientConnection) -> None:
        async for raw in ws:
            try:
                event, data = decode_frame(raw)
            except ValueError:
                logger.warning("Skipping malformed frame")
                continue
            handlers = self._handlers.get(event)
            if not handlers:
                logger.debug("No handler for %s", event)
                continue
            for handler in handlers:
                try:
                    await handler(data)
                except Exception:
                    logger.exception("Error handling %s event", event)

    @staticmethod
    async def _pump(ws: ClientConnection, outbox: asyncio.Queue[str]) -> None:
        while True:
            raw = await outbox.get()
            try:
                await ws.send(raw)
            except ConnectionClosed:
                return

    @staticmethod
    async def _fire(callbacks: list[LifecycleCallback]) -> None:
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                logger.exception("Channel lifecycle callback failed")
