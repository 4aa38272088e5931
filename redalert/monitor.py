from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Iterable, List
from zoneinfo import ZoneInfo

from .alerts import Alert, Tier
from .arbiter import AlertArbiter
from .config import AppConfig
from .dedup import SWEEP_INTERVAL, DedupWindow
from .devices import DeviceRegistry
from .geofilter import GeoTimeFilter
from .history_poller import HistoryPoller
from .media import MediaResolver
from .normalize import RejectReason, normalize_history, normalize_push
from .playback import PlaybackCoordinator
from .push_client import PushFeedClient
from .sensors import LoggingSensorSink, SensorSink, StateFileSensorSink

log = logging.getLogger("redalert")

TEST_RESET_SECONDS = 10.0


def _uniq(areas: Iterable[str]) -> tuple[str, ...]:
    out: List[str] = []
    for a in areas:
        if a not in out:
            out.append(a)
    return tuple(out)


class Monitor:
    """
    Owns every piece of shared state (dedup window, tier states, device registry) and
    the tasks that feed it.

    Feed clients only enqueue raw payloads; the consumers below apply them one at a time
    on the event loop, so normalization, dedup, relevance and arbitration of a payload
    happen without any suspension point in between.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        sink: SensorSink | None = None,
        registry: DeviceRegistry | None = None,
        resolver: MediaResolver | None = None,
        now_fn: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.cfg = cfg
        self.tz = ZoneInfo(cfg.monitor.timezone)
        self._now = now_fn or (lambda: dt.datetime.now(dt.timezone.utc))

        self.filter = GeoTimeFilter(
            cfg.monitor.cities,
            self.tz,
            early_warning_hours=cfg.tiers.early_warning_hours,
        )
        self.dedup = DedupWindow()
        self.sweep_seconds = SWEEP_INTERVAL.total_seconds()

        if sink is None:
            sink = StateFileSensorSink(cfg.sensors.state_path) if cfg.sensors.state_path else LoggingSensorSink()
        self.sink = sink

        self.registry = registry if registry is not None else DeviceRegistry()
        self.resolver = resolver or MediaResolver.for_host(cfg.media.port, cfg.media.base_url)
        self.playback = PlaybackCoordinator(self.registry, self.resolver, cfg.playback)

        self.arbiter = AlertArbiter(
            self.sink,
            timeout_seconds=cfg.tiers.timeout_seconds,
            play=self.playback.play if cfg.playback.enabled else None,
            hours_gate=self.filter.within_hours,
        )

        self.push_queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=200)
        self.history_queue: asyncio.Queue[list[Any]] = asyncio.Queue(maxsize=20)
        self.push_connected = False

        if self.filter.monitor_all:
            log.info("No cities configured; monitoring all areas")
        else:
            log.info("Monitoring %d cities: %s", len(self.filter.cities), ", ".join(sorted(self.filter.cities)))

    # ----------------------------
    # Push feed
    # ----------------------------
    def on_push_connected(self) -> None:
        self.push_connected = True

    def on_push_disconnected(self) -> None:
        self.push_connected = False
        log.warning("Push feed disconnected; relying on history polling until reconnect")

    def handle_push(self, raw: Any) -> bool:
        """Apply one push message. Returns True when it activated the primary tier."""
        now = self._now()
        res = normalize_push(raw, now=now)
        if not res.ok:
            if res.reason is RejectReason.ALL_CLEAR:
                self.arbiter.all_clear()
            else:
                log.error("Invalid alert format: %s", res.detail)
            return False

        alert = res.alert
        assert alert is not None
        log.info("Received alert: type=%d areas=%s", alert.raw_category, ",".join(alert.areas))

        relevant = self.filter.relevant_areas(alert.areas)
        if not relevant or not self.filter.is_relevant(alert, now):
            log.debug("Alert not relevant to monitored cities")
            return False

        log.info("Alert triggered for areas: %s", ", ".join(relevant))
        return self.arbiter.activate_primary(relevant, is_test=alert.is_test)

    # ----------------------------
    # History feed
    # ----------------------------
    def handle_history_batch(self, records: Iterable[Any]) -> dict[Tier, tuple[str, ...]]:
        """
        Apply one polled batch. Returns the areas that triggered each tier.

        Every record matching a tier's category and title is marked processed before the
        relevance check, so a late duplicate of an already-handled (or already-dropped)
        record never triggers on a later poll.
        """
        now = self._now()
        hits: dict[Tier, list[str]] = {Tier.EARLY_WARNING: [], Tier.FLASH_ALERT: []}

        for rec in records:
            try:
                alert = self._accept_history_record(rec, now)
            except Exception:
                log.exception("Error processing history record %r", rec)
                continue
            if alert is not None:
                hits[alert.tier].extend(self.filter.relevant_areas(alert.areas))

        triggered: dict[Tier, tuple[str, ...]] = {}

        # flash first: an early warning in the same batch is then rejected, not flickered
        fa = _uniq(hits[Tier.FLASH_ALERT])
        if fa and self.arbiter.activate_flash_alert(fa):
            triggered[Tier.FLASH_ALERT] = fa

        ew = _uniq(hits[Tier.EARLY_WARNING])
        if ew and self.arbiter.activate_early_warning(ew, now=now):
            triggered[Tier.EARLY_WARNING] = ew

        return triggered

    def _accept_history_record(self, rec: Any, now: dt.datetime) -> Alert | None:
        res = normalize_history(
            rec,
            early_warning_title=self.cfg.tiers.early_warning_title,
            flash_title=self.cfg.tiers.flash_title,
            tz=self.tz,
        )
        if not res.ok:
            if res.reason is RejectReason.NON_MATCHING_TITLE:
                log.info("Ignoring history record with unexpected title (%s)", res.detail)
            elif res.reason is RejectReason.MALFORMED:
                log.warning("Malformed history record: %s", res.detail)
            return None

        alert = res.alert
        assert alert is not None
        if not self.dedup.seen_or_record(alert.identity(), now):
            return None

        if not self.filter.is_relevant(alert, now):
            log.debug("History %s dropped (area/freshness/hours): %s", alert.tier.value, alert.areas)
            return None
        return alert

    # ----------------------------
    # Manual test
    # ----------------------------
    def trigger_test(self) -> None:
        cities = self.cfg.monitor.cities
        areas = [cities[0]] if cities else ["Test"]
        log.info("Running alert test")
        self.arbiter.activate_primary(areas, is_test=True, timeout=TEST_RESET_SECONDS)

    # ----------------------------
    # Loops
    # ----------------------------
    async def _consume_push(self) -> None:
        while True:
            raw = await self.push_queue.get()
            try:
                self.handle_push(raw)
            except Exception:
                log.exception("Error processing push message")

    async def _consume_history(self) -> None:
        while True:
            batch = await self.history_queue.get()
            try:
                self.handle_history_batch(batch)
            except Exception:
                log.exception("Error processing history batch")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_seconds)
            self.dedup.sweep(self._now())

    async def run(self) -> None:
        tasks: list[asyncio.Task] = []

        push = PushFeedClient(
            self.cfg.push.url,
            self.push_queue,
            reconnect_interval=self.cfg.push.reconnect_interval_seconds,
            ping_interval=self.cfg.push.ping_interval_seconds,
            on_connected=self.on_push_connected,
            on_disconnected=self.on_push_disconnected,
        )
        tasks.append(asyncio.create_task(push.run_forever(), name="push_feed"))
        tasks.append(asyncio.create_task(self._consume_push(), name="push_consumer"))

        if self.cfg.history.enabled:
            poller = HistoryPoller(
                url=self.cfg.history.url,
                out_queue=self.history_queue,
                poll_seconds=self.cfg.history.poll_interval_seconds,
                timeout=self.cfg.history.timeout_seconds,
            )
            tasks.append(asyncio.create_task(poller.run_forever(), name="history_poller"))
            tasks.append(asyncio.create_task(self._consume_history(), name="history_consumer"))
        else:
            log.info("History polling disabled (history.enabled=false)")

        tasks.append(asyncio.create_task(self._sweep_loop(), name="dedup_sweep"))

        if self.cfg.playback.enabled:
            # pychromecast/zeroconf are only loaded when casting is enabled
            from .chromecast import CastDiscovery

            discovery = CastDiscovery(
                self.registry,
                refresh_seconds=self.cfg.discovery.refresh_seconds,
                scan_seconds=self.cfg.discovery.scan_seconds,
                hold_seconds=self.cfg.tiers.timeout_seconds,
            )
            tasks.append(asyncio.create_task(discovery.run_forever(), name="cast_discovery"))
        else:
            log.info("Chromecast playback disabled (playback.enabled=false)")

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for t in done:
                exc = t.exception()
                if exc:
                    for p in pending:
                        p.cancel()
                    raise exc
        finally:
            self.arbiter.shutdown()
            for t in tasks:
                t.cancel()
