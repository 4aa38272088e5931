from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List

from .alerts import Tier, media_key_for
from .config import PlaybackConfig
from .devices import DeviceRegistry, PlaybackDevice, is_capable
from .media import MediaResolver, UnknownMediaError

log = logging.getLogger("redalert.playback")


@dataclass(frozen=True)
class DeliveryResult:
    device_id: str
    ok: bool
    attempts: int
    volume: int | None = None
    error: str | None = None


class PlaybackCoordinator:
    """
    Fans a tier's media out to every registered device.

    Each device is handled by its own task: play with fixed-backoff retries, then set
    the tier's effective volume. A failing device never affects the others.
    """

    def __init__(self, registry: DeviceRegistry, resolver: MediaResolver, cfg: PlaybackConfig) -> None:
        self.registry = registry
        self.resolver = resolver
        self.cfg = cfg

    def effective_volume(self, device: PlaybackDevice, tier: Tier) -> int:
        overrides = self.cfg.device_volumes
        if device.display_name in overrides:
            base = overrides[device.display_name]
        elif device.id in overrides:
            base = overrides[device.id]
        else:
            base = self.cfg.default_volume

        if tier is Tier.EARLY_WARNING:
            base -= self.cfg.early_warning_reduction
        elif tier is Tier.FLASH_ALERT:
            base -= self.cfg.flash_reduction
        return max(0, min(100, int(base)))

    async def play(self, tier: Tier, areas: Iterable[str] = (), is_test: bool = False) -> List[DeliveryResult]:
        key = media_key_for(tier, is_test)
        try:
            # probe once so an unknown key fails before any device is touched
            self.resolver.resolve(key)
        except UnknownMediaError:
            log.error("No media configured for %s (tier=%s); skipping playback", key, tier.value)
            return []

        devices = [d for d in self.registry.snapshot() if is_capable(d)]
        if not devices:
            log.warning("No playback devices found; %s not played", key)
            return []

        log.info("Playing %s on %d device(s) for %s", key, len(devices), ", ".join(areas) or "-")
        results = await asyncio.gather(*(self._deliver(d, tier, key) for d in devices))
        ok = sum(1 for r in results if r.ok)
        log.info("Playback %s: %d/%d device(s) succeeded", key, ok, len(results))
        return list(results)

    async def _deliver(self, device: PlaybackDevice, tier: Tier, key: str) -> DeliveryResult:
        url = self.resolver.resolve(key, video=device.video)
        content_type = self.resolver.content_type(device.video)
        attempts_max = 1 + max(0, int(self.cfg.retries))

        last_exc: Exception | None = None
        attempt = 0
        for attempt in range(1, attempts_max + 1):
            try:
                await device.player.play(url, content_type)
                last_exc = None
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_exc = e
                if attempt < attempts_max:
                    log.warning(
                        "Play failed on %s (try %d/%d): %s; retrying in %.1fs",
                        device.display_name, attempt, attempts_max, e, self.cfg.retry_backoff_seconds,
                    )
                    await asyncio.sleep(self.cfg.retry_backoff_seconds)

        if last_exc is not None:
            log.error("Giving up on %s after %d attempts: %s", device.display_name, attempt, last_exc)
            return DeliveryResult(device_id=device.id, ok=False, attempts=attempt, error=str(last_exc))

        log.info("Playing %s on %s", url, device.display_name)

        volume = self.effective_volume(device, tier)
        try:
            await device.player.set_volume(volume)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # playback already started; volume is best-effort
            log.error("Volume set failed on %s: %s", device.display_name, e)
            return DeliveryResult(device_id=device.id, ok=True, attempts=attempt, error=f"volume: {e}")

        return DeliveryResult(device_id=device.id, ok=True, attempts=attempt, volume=volume)
