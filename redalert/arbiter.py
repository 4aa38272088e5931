from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from .alerts import Tier
from .sensors import SensorSink

log = logging.getLogger("redalert")

PlayFn = Callable[[Tier, tuple, bool], Awaitable[Any]]
HoursGate = Callable[[dt.datetime], bool]


@dataclass
class TierState:
    active: bool = False
    areas: tuple[str, ...] = ()
    # bumped on every activation and reset; a timer only applies if its generation matches
    generation: int = 0
    timer: Optional[asyncio.TimerHandle] = None


@dataclass(frozen=True)
class TierView:
    active: bool
    areas: tuple[str, ...]


class AlertArbiter:
    """
    State machine for the three alert tiers.

    Priority is Primary > FlashAlert > EarlyWarning: a higher tier forces lower tiers
    idle before it activates, and a lower tier is rejected while a higher one is active.
    Each active tier owns exactly one expiry timer. Every transition is reported to the
    sensor sink, and playback runs as a detached task so it never blocks a transition.
    Preempting or resetting a tier cancels its in-flight playback; expiry lets it finish.

    All methods must be called from the event loop thread; none of them suspend, so each
    call is atomic with respect to the feeds and the expiry timers.
    """

    def __init__(
        self,
        sink: SensorSink,
        *,
        timeout_seconds: float,
        play: PlayFn | None = None,
        hours_gate: HoursGate | None = None,
    ) -> None:
        self.sink = sink
        self.timeout_seconds = float(timeout_seconds)
        self._play = play
        self._hours_gate = hours_gate
        self._states: Dict[Tier, TierState] = {t: TierState() for t in Tier}
        self._playback: Dict[Tier, set[asyncio.Task]] = {t: set() for t in Tier}

    # ----------------------------
    # Queries
    # ----------------------------
    def is_active(self, tier: Tier) -> bool:
        return self._states[tier].active

    def areas(self, tier: Tier) -> tuple[str, ...]:
        return self._states[tier].areas

    def has_timer(self, tier: Tier) -> bool:
        return self._states[tier].timer is not None

    def snapshot(self) -> Dict[Tier, TierView]:
        return {t: TierView(active=s.active, areas=s.areas) for t, s in self._states.items()}

    # ----------------------------
    # Transitions
    # ----------------------------
    def activate_primary(self, areas: Iterable[str], is_test: bool = False, *, timeout: float | None = None) -> bool:
        for lower in (Tier.EARLY_WARNING, Tier.FLASH_ALERT):
            if self._states[lower].active:
                log.info("Primary alert preempts %s", lower.value)
                self.stop_playback(lower)
            else:
                # an expired tier may still be retrying its clip
                self._cancel_playback(lower)
        self._activate(Tier.PRIMARY, tuple(areas), is_test=is_test, timeout=timeout)
        return True

    def all_clear(self) -> None:
        log.info("Received all-clear signal")
        self._to_idle(Tier.PRIMARY, reason="all-clear", force=True)

    def activate_early_warning(self, areas: Iterable[str], now: dt.datetime | None = None) -> bool:
        if self._states[Tier.PRIMARY].active:
            log.info("Early warning ignored: primary alert active")
            return False
        if self._states[Tier.FLASH_ALERT].active:
            log.info("Early warning ignored: flash alert active")
            return False
        if self._hours_gate is not None:
            now = now or dt.datetime.now(dt.timezone.utc)
            if not self._hours_gate(now):
                log.info("Early warning suppressed outside allowed hours")
                return False
        self._activate(Tier.EARLY_WARNING, tuple(areas))
        return True

    def activate_flash_alert(self, areas: Iterable[str]) -> bool:
        if self._states[Tier.PRIMARY].active:
            log.info("Flash alert ignored: primary alert active")
            return False
        if self._states[Tier.EARLY_WARNING].active:
            log.info("Flash alert preempts early warning")
            self.stop_playback(Tier.EARLY_WARNING)
        else:
            self._cancel_playback(Tier.EARLY_WARNING)
        self._activate(Tier.FLASH_ALERT, tuple(areas))
        return True

    def stop_playback(self, tier: Tier) -> None:
        """Manual reset: cancel the tier's timer and go idle now."""
        self._to_idle(tier, reason="reset")

    def shutdown(self) -> None:
        for st in self._states.values():
            if st.timer is not None:
                st.timer.cancel()
                st.timer = None
            st.generation += 1
        for tier in Tier:
            self._cancel_playback(tier)

    # ----------------------------
    # Internals
    # ----------------------------
    def _activate(self, tier: Tier, areas: tuple[str, ...], *, is_test: bool = False, timeout: float | None = None) -> None:
        loop = asyncio.get_running_loop()
        st = self._states[tier]

        if st.timer is not None:
            st.timer.cancel()
        st.generation += 1
        st.active = True
        st.areas = areas
        delay = self.timeout_seconds if timeout is None else float(timeout)
        st.timer = loop.call_later(delay, self._expire, tier, st.generation)

        log.info(
            "%s ACTIVE%s for %s (expires in %.0fs)",
            tier.value, " (test)" if is_test else "", ", ".join(areas) or "-", delay,
        )
        self._emit(tier, True)
        self._spawn_playback(tier, areas, is_test)

    def _expire(self, tier: Tier, generation: int) -> None:
        st = self._states[tier]
        if generation != st.generation or not st.active:
            # superseded by a later activation or reset
            log.debug("Stale %s timer ignored (gen %d != %d)", tier.value, generation, st.generation)
            return
        st.timer = None
        log.info("Auto-resetting %s after timeout", tier.value)
        self._to_idle(tier, reason="timeout")

    def _to_idle(self, tier: Tier, *, reason: str, force: bool = False) -> None:
        st = self._states[tier]
        if st.timer is not None:
            st.timer.cancel()
            st.timer = None
        was_active = st.active
        if reason != "timeout":
            # a preempted or reset tier must not keep driving the devices
            self._cancel_playback(tier)
        st.generation += 1
        st.active = False
        st.areas = ()
        if was_active or force:
            log.info("%s idle (%s)", tier.value, reason)
            self._emit(tier, False)

    def _emit(self, tier: Tier, active: bool) -> None:
        try:
            self.sink.set_tier(tier, active)
        except Exception:
            log.exception("Sensor sink failed for %s=%s", tier.value, active)

    def _spawn_playback(self, tier: Tier, areas: tuple[str, ...], is_test: bool) -> None:
        if self._play is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._play(tier, areas, is_test), name=f"playback_{tier.value}"
        )
        self._playback[tier].add(task)
        task.add_done_callback(self._playback[tier].discard)
        task.add_done_callback(self._playback_done)

    def _playback_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Playback task %s failed: %r", task.get_name(), exc)

    def _cancel_playback(self, tier: Tier) -> None:
        tasks = self._playback[tier]
        if tasks:
            log.info("Cancelling %d in-flight %s playback task(s)", len(tasks), tier.value)
        for t in list(tasks):
            t.cancel()
