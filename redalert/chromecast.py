from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

import pychromecast
import zeroconf
from pychromecast.discovery import CastBrowser, SimpleCastListener

from .devices import DeviceRegistry, PlaybackDevice, PlaybackError

log = logging.getLogger("redalert.cast")

CAST_TYPE_AUDIO = "audio"
CAST_TYPE_GROUP = "group"


class CastPlayer:
    """
    `Playable` adapter for one cast device.

    pychromecast is blocking, so every call runs in a worker thread. The connection
    opened by play() is reused by set_volume() and released after `hold_seconds`.
    """

    def __init__(
        self,
        cast_info: "pychromecast.models.CastInfo",
        zconf: zeroconf.Zeroconf,
        *,
        connect_timeout: float = 10.0,
        hold_seconds: float = 30.0,
    ) -> None:
        self.cast_info = cast_info
        self.zconf = zconf
        self.connect_timeout = float(connect_timeout)
        self.hold_seconds = float(hold_seconds)
        self._cast: Optional[pychromecast.Chromecast] = None
        self._lock = threading.Lock()
        self._release_task: Optional[asyncio.Task] = None

    def _connect(self) -> pychromecast.Chromecast:
        with self._lock:
            if self._cast is not None:
                return self._cast
            cast = pychromecast.get_chromecast_from_cast_info(
                self.cast_info, self.zconf, tries=1, timeout=self.connect_timeout
            )
            cast.wait(timeout=self.connect_timeout)
            self._cast = cast
            return cast

    def _disconnect(self) -> None:
        with self._lock:
            cast, self._cast = self._cast, None
        if cast is not None:
            try:
                cast.disconnect(timeout=5)
            except Exception as e:
                log.debug("Cast disconnect from %s failed: %s", self.cast_info.host, e)

    def _play_sync(self, url: str, content_type: str) -> None:
        try:
            cast = self._connect()
            mc = cast.media_controller
            mc.play_media(url, content_type, stream_type="BUFFERED", autoplay=True)
            mc.block_until_active(timeout=self.connect_timeout)
        except Exception as e:
            self._disconnect()
            raise PlaybackError(f"{self.cast_info.friendly_name}: {e}") from e

    def _set_volume_sync(self, percent: int) -> None:
        try:
            cast = self._connect()
            cast.set_volume(max(0, min(100, int(percent))) / 100.0)
        except Exception as e:
            raise PlaybackError(f"{self.cast_info.friendly_name}: volume: {e}") from e

    async def play(self, url: str, content_type: str) -> None:
        await asyncio.to_thread(self._play_sync, url, content_type)
        self._schedule_release()

    async def set_volume(self, percent: int) -> None:
        await asyncio.to_thread(self._set_volume_sync, percent)

    def _schedule_release(self) -> None:
        if self._release_task is not None:
            self._release_task.cancel()

        async def _release() -> None:
            await asyncio.sleep(self.hold_seconds)
            await asyncio.to_thread(self._disconnect)

        self._release_task = asyncio.create_task(_release(), name=f"cast_release_{self.cast_info.host}")


def device_from_cast_info(cast_info, zconf: zeroconf.Zeroconf, *, hold_seconds: float = 30.0) -> PlaybackDevice:
    return PlaybackDevice(
        id=str(cast_info.host or ""),
        display_name=str(cast_info.friendly_name or ""),
        port=int(cast_info.port or 8009),
        video=cast_info.cast_type != CAST_TYPE_AUDIO,
        player=CastPlayer(cast_info, zconf, hold_seconds=hold_seconds),
    )


class CastDiscovery:
    """
    mDNS discovery of cast devices feeding a DeviceRegistry.

    zeroconf invokes listener callbacks on its own threads; devices are handed to the
    registry through the event loop with call_soon_threadsafe().

    Every `refresh_seconds` the browser is restarted. Known devices stay in the registry
    while the new scan runs; after `scan_seconds` the ones it did not announce again are
    dropped. A scan that finds nothing leaves the registry untouched.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        refresh_seconds: float = 300.0,
        scan_seconds: float = 10.0,
        hold_seconds: float = 30.0,
        include_groups: bool = False,
    ) -> None:
        self.registry = registry
        self.refresh_seconds = float(refresh_seconds)
        self.scan_seconds = min(float(scan_seconds), self.refresh_seconds)
        self.hold_seconds = float(hold_seconds)
        self.include_groups = include_groups
        self._zconf: Optional[zeroconf.Zeroconf] = None
        self._browser: Optional[CastBrowser] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # addresses announced since the current browser started
        self._announced: set[str] = set()

    def _found(self, device: PlaybackDevice) -> None:
        self._announced.add(device.id)
        self.registry.on_discovered(device)

    def _on_add(self, uuid, _service) -> None:
        browser = self._browser
        if browser is None or self._zconf is None:
            return
        info = browser.services.get(uuid)
        if info is None or not info.host:
            return
        if info.cast_type == CAST_TYPE_GROUP and not self.include_groups:
            log.debug("Skipping cast group %s", info.friendly_name)
            return
        device = device_from_cast_info(info, self._zconf, hold_seconds=self.hold_seconds)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._found, device)
        else:
            self._found(device)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if loop is not None:
            self._loop = loop
        if self._zconf is None:
            self._zconf = zeroconf.Zeroconf()
        listener = SimpleCastListener(add_callback=self._on_add, update_callback=self._on_add)
        self._browser = CastBrowser(listener, self._zconf)
        self._browser.start_discovery()
        log.info("Starting Chromecast discovery")

    def stop(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                browser.stop_discovery()
            except Exception:
                log.exception("Cast discovery stop failed")

    def close(self) -> None:
        self.stop()
        zconf, self._zconf = self._zconf, None
        if zconf is not None:
            zconf.close()

    def prune(self) -> int:
        if not self._announced:
            log.warning("Chromecast scan found no devices; keeping %d known device(s)", len(self.registry))
            return 0
        return self.registry.retain(self._announced)

    async def run_forever(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            while True:
                self._announced.clear()
                await asyncio.to_thread(self.start)
                await asyncio.sleep(self.scan_seconds)
                self.prune()
                await asyncio.sleep(self.refresh_seconds - self.scan_seconds)
                log.debug("Performing periodic Chromecast scan")
                await asyncio.to_thread(self.stop)
        finally:
            self.close()
