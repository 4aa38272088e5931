from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, List, Protocol, runtime_checkable

log = logging.getLogger("redalert.cast")


class PlaybackError(RuntimeError):
    pass


@runtime_checkable
class Playable(Protocol):
    async def play(self, url: str, content_type: str) -> None: ...

    async def set_volume(self, percent: int) -> None: ...


@dataclass(frozen=True)
class PlaybackDevice:
    id: str  # host address
    display_name: str
    player: Playable
    port: int = 8009
    video: bool = True

    @property
    def address(self) -> str:
        return self.id


def is_capable(device: PlaybackDevice) -> bool:
    if not (device.id or "").strip():
        return False
    if not (device.display_name or "").strip():
        return False
    return isinstance(device.player, Playable)


class DeviceRegistry:
    """
    Live set of discovered playback devices keyed by host address.

    First-seen wins until the device is dropped by `retain()` or `clear()`. Discovery
    callbacks may arrive on zeroconf threads, so all access goes through a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._devices: dict[str, PlaybackDevice] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def on_discovered(self, device: PlaybackDevice) -> bool:
        if not is_capable(device):
            log.warning("Ignoring incapable device name=%r address=%r", device.display_name, device.id)
            return False
        with self._lock:
            if device.id in self._devices:
                return False
            self._devices[device.id] = device
        log.info("Found playback device: %s at %s:%d", device.display_name, device.id, device.port)
        return True

    def snapshot(self) -> List[PlaybackDevice]:
        with self._lock:
            return list(self._devices.values())

    def clear(self) -> None:
        with self._lock:
            n = len(self._devices)
            self._devices.clear()
        log.debug("Device registry cleared (%d devices)", n)

    def retain(self, addresses: Iterable[str]) -> int:
        """Drop every device whose address is not in `addresses`. Returns the number dropped."""
        keep = set(addresses)
        with self._lock:
            gone = [a for a in self._devices if a not in keep]
            for a in gone:
                del self._devices[a]
        for a in gone:
            log.info("Playback device %s no longer announced; removed", a)
        return len(gone)
