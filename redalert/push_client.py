from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from websockets.asyncio.client import connect

log = logging.getLogger("redalert.push")


class PushFeedClient:
    """
    WebSocket listener for the real-time alert stream.

    - Emits every text frame into an asyncio.Queue[str] owned by the monitor.
    - Keeps the link alive with protocol pings (default every 30s).
    - Reconnects after a fixed delay on close or error. There is a single supervisor
      loop, so reconnect attempts can never overlap.
    """

    def __init__(
        self,
        url: str,
        out_queue: "asyncio.Queue[str]",
        *,
        reconnect_interval: float = 5.0,
        ping_interval: float = 30.0,
        on_connected: Optional[Callable[[], None]] = None,
        on_disconnected: Optional[Callable[[], None]] = None,
    ) -> None:
        self.url = url
        self.out_queue = out_queue
        self.reconnect_interval = float(reconnect_interval)
        self.ping_interval = float(ping_interval)
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self._rx_count = 0
        self.connected = False
        self._opened = False

    def _emit(self, text: str) -> None:
        try:
            self.out_queue.put_nowait(text)
        except asyncio.QueueFull:
            log.warning("Push queue full; dropping message")

    def _hook(self, fn: Optional[Callable[[], None]]) -> None:
        if fn is None:
            return
        try:
            fn()
        except Exception:
            log.exception("Push feed hook failed")

    async def _listen_once(self) -> None:
        log.info("Connecting to WebSocket: %s", self.url)
        async with connect(
            self.url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_interval,
            open_timeout=10,
        ) as ws:
            self.connected = True
            self._opened = True
            log.info("WebSocket connected")
            self._hook(self.on_connected)
            try:
                async for message in ws:
                    if isinstance(message, bytes):
                        message = message.decode("utf-8", errors="replace")
                    self._rx_count += 1
                    self._emit(message)
            finally:
                self.connected = False

    async def run_forever(self) -> None:
        while True:
            self._opened = False
            try:
                await self._listen_once()
                log.info("WebSocket connection closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("WebSocket error: %s", e)

            if self._opened:
                self._hook(self.on_disconnected)
            log.info("Scheduling WebSocket reconnect in %.1f seconds", self.reconnect_interval)
            await asyncio.sleep(self.reconnect_interval)
