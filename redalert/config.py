from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple
import logging
import os

import yaml

log = logging.getLogger("redalert")

DEFAULT_WS_URL = "ws://ws.cumta.morhaviv.com:25565/ws"
DEFAULT_HISTORY_URL = "https://www.oref.org.il/warningMessages/alert/History/AlertsHistory.json"
DEFAULT_EARLY_WARNING_TITLE = "בדקות הקרובות צפויות להתקבל התרעות באזורך"
DEFAULT_FLASH_TITLE = "שהייה בסמיכות למרחב מוגן"

DEFAULT_VOLUME = 30
DEFAULT_EARLY_WARNING_REDUCTION = 30
DEFAULT_FLASH_REDUCTION = 20
DEFAULT_EARLY_WARNING_HOURS = (10, 20)


@dataclass(frozen=True)
class MonitorConfig:
    cities: List[str] = field(default_factory=list)
    timezone: str = "Asia/Jerusalem"


@dataclass(frozen=True)
class PushFeedConfig:
    url: str = DEFAULT_WS_URL
    reconnect_interval_seconds: float = 5.0
    ping_interval_seconds: float = 30.0


@dataclass(frozen=True)
class HistoryFeedConfig:
    enabled: bool = True
    url: str = DEFAULT_HISTORY_URL
    poll_interval_seconds: float = 8.0
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class TierConfig:
    timeout_seconds: float = 30.0
    early_warning_title: str = DEFAULT_EARLY_WARNING_TITLE
    flash_title: str = DEFAULT_FLASH_TITLE
    early_warning_hours: Tuple[int, int] = DEFAULT_EARLY_WARNING_HOURS


@dataclass(frozen=True)
class PlaybackConfig:
    enabled: bool = True
    default_volume: int = DEFAULT_VOLUME
    device_volumes: Dict[str, int] = field(default_factory=dict)
    early_warning_reduction: int = DEFAULT_EARLY_WARNING_REDUCTION
    flash_reduction: int = DEFAULT_FLASH_REDUCTION
    retries: int = 3
    retry_backoff_seconds: float = 2.0


@dataclass(frozen=True)
class MediaConfig:
    base_url: str = ""
    port: int = 8095


@dataclass(frozen=True)
class DiscoveryConfig:
    refresh_seconds: float = 300.0
    scan_seconds: float = 10.0


@dataclass(frozen=True)
class SensorConfig:
    state_path: str = ""


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    push: PushFeedConfig = field(default_factory=PushFeedConfig)
    history: HistoryFeedConfig = field(default_factory=HistoryFeedConfig)
    tiers: TierConfig = field(default_factory=TierConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    sensors: SensorConfig = field(default_factory=SensorConfig)


def _env(key: str, default: str | None = None) -> str | None:
    v = os.environ.get(key)
    return v if v not in (None, "") else default


def _env_list(key: str, default: List[str]) -> List[str]:
    v = _env(key)
    if v is None:
        return default
    return [s.strip() for s in v.split(",") if s.strip()]


def _int_in_range(name: str, value: Any, lo: int, hi: int, default: int) -> int:
    """Out-of-range or non-numeric values fall back to `default` with a warning."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        log.warning("Config %s=%r is not a number; using %d", name, value, default)
        return default
    if n < lo or n > hi:
        log.warning("Config %s=%d out of range %d-%d; using %d", name, n, lo, hi, default)
        return default
    return n


def _positive(name: str, value: Any, default: float) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        log.warning("Config %s=%r is not a number; using %s", name, value, default)
        return default
    if f <= 0:
        log.warning("Config %s=%s must be positive; using %s", name, f, default)
        return default
    return f


def _hours(raw: Dict[str, Any]) -> Tuple[int, int]:
    start = raw.get("early_warning_start_hour", DEFAULT_EARLY_WARNING_HOURS[0])
    end = raw.get("early_warning_end_hour", DEFAULT_EARLY_WARNING_HOURS[1])
    try:
        s, e = int(start), int(end)
    except (TypeError, ValueError):
        s, e = -1, -1
    if not (0 <= s <= 23 and 0 <= e <= 23) or s == e:
        log.warning(
            "Config early-warning hours %r-%r invalid; using %d-%d",
            start, end, *DEFAULT_EARLY_WARNING_HOURS,
        )
        return DEFAULT_EARLY_WARNING_HOURS
    return (s, e)


def _device_volumes(raw: Any) -> Dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, int] = {}
    for name, vol in raw.items():
        key = str(name).strip()
        if not key:
            continue
        out[key] = _int_in_range(f"playback.device_volumes[{key}]", vol, 0, 100, DEFAULT_VOLUME)
    return out


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = raw.get(key)
    return v if isinstance(v, dict) else {}


def build_config(raw: Dict[str, Any]) -> AppConfig:
    mon = _section(raw, "monitor")
    push = _section(raw, "push")
    hist = _section(raw, "history")
    tiers = _section(raw, "tiers")
    pb = _section(raw, "playback")
    media = _section(raw, "media")
    disc = _section(raw, "discovery")
    sensors = _section(raw, "sensors")

    cities = [str(c).strip() for c in (mon.get("cities") or []) if str(c).strip()]

    return AppConfig(
        monitor=MonitorConfig(
            cities=_env_list("REDALERT_CITIES", cities),
            timezone=_env("REDALERT_TIMEZONE", str(mon.get("timezone", "Asia/Jerusalem"))),
        ),
        push=PushFeedConfig(
            url=_env("REDALERT_WS_URL", str(push.get("url", DEFAULT_WS_URL))),
            reconnect_interval_seconds=_positive(
                "push.reconnect_interval_seconds", push.get("reconnect_interval_seconds", 5.0), 5.0
            ),
            ping_interval_seconds=_positive("push.ping_interval_seconds", push.get("ping_interval_seconds", 30.0), 30.0),
        ),
        history=HistoryFeedConfig(
            enabled=bool(hist.get("enabled", True)),
            url=_env("REDALERT_HISTORY_URL", str(hist.get("url", DEFAULT_HISTORY_URL))),
            poll_interval_seconds=_positive(
                "history.poll_interval_seconds", hist.get("poll_interval_seconds", 8.0), 8.0
            ),
            timeout_seconds=_positive("history.timeout_seconds", hist.get("timeout_seconds", 10.0), 10.0),
        ),
        tiers=TierConfig(
            timeout_seconds=_positive("tiers.timeout_seconds", tiers.get("timeout_seconds", 30.0), 30.0),
            early_warning_title=str(tiers.get("early_warning_title", DEFAULT_EARLY_WARNING_TITLE)),
            flash_title=str(tiers.get("flash_title", DEFAULT_FLASH_TITLE)),
            early_warning_hours=_hours(tiers),
        ),
        playback=PlaybackConfig(
            enabled=bool(pb.get("enabled", True)),
            default_volume=_int_in_range("playback.default_volume", pb.get("default_volume", DEFAULT_VOLUME), 0, 100, DEFAULT_VOLUME),
            device_volumes=_device_volumes(pb.get("device_volumes")),
            early_warning_reduction=_int_in_range(
                "playback.early_warning_reduction",
                pb.get("early_warning_reduction", DEFAULT_EARLY_WARNING_REDUCTION),
                0, 100, DEFAULT_EARLY_WARNING_REDUCTION,
            ),
            flash_reduction=_int_in_range(
                "playback.flash_reduction",
                pb.get("flash_reduction", DEFAULT_FLASH_REDUCTION),
                0, 100, DEFAULT_FLASH_REDUCTION,
            ),
            retries=_int_in_range("playback.retries", pb.get("retries", 3), 0, 10, 3),
            retry_backoff_seconds=_positive("playback.retry_backoff_seconds", pb.get("retry_backoff_seconds", 2.0), 2.0),
        ),
        media=MediaConfig(
            base_url=_env("REDALERT_MEDIA_BASE_URL", str(media.get("base_url") or "")),
            port=_int_in_range("media.port", media.get("port", 8095), 1, 65535, 8095),
        ),
        discovery=DiscoveryConfig(
            refresh_seconds=_positive("discovery.refresh_seconds", disc.get("refresh_seconds", 300.0), 300.0),
            scan_seconds=_positive("discovery.scan_seconds", disc.get("scan_seconds", 10.0), 10.0),
        ),
        sensors=SensorConfig(
            state_path=_env("REDALERT_SENSOR_STATE_PATH", str(sensors.get("state_path") or "")),
        ),
    )


def load_config(path: str | None) -> AppConfig:
    raw: Dict[str, Any] = {}
    if path and Path(path).exists():
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    elif path:
        log.warning("Config file %s not found; using defaults", path)
    return build_config(raw)
