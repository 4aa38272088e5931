from __future__ import annotations

import contextlib
import datetime as dt
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from .alerts import Tier

log = logging.getLogger("redalert")


@runtime_checkable
class SensorSink(Protocol):
    """Boolean sensors consumed by the home-automation hub, one per tier."""

    def set_tier(self, tier: Tier, active: bool) -> None: ...

    def get_tier(self, tier: Tier) -> bool: ...


def atomic_write_json(path: str, payload: Dict[str, Any]) -> None:
    """Replace `path` with `payload` as JSON; the hub never sees a partial file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


class LoggingSensorSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state: Dict[Tier, bool] = {t: False for t in Tier}

    def set_tier(self, tier: Tier, active: bool) -> None:
        with self._lock:
            self._state[tier] = bool(active)
        log.info("Sensor %s -> %s", tier.value, "ACTIVE" if active else "inactive")

    def get_tier(self, tier: Tier) -> bool:
        with self._lock:
            return self._state[tier]

    def states(self) -> Dict[Tier, bool]:
        with self._lock:
            return dict(self._state)


class StateFileSensorSink(LoggingSensorSink):
    """
    Publishes the three tier sensors as a small JSON document the hub polls, e.g.

        {"generatedAt": "...", "sensors": {"primary": true, "early_warning": false, ...}}
    """

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        self._write()

    def set_tier(self, tier: Tier, active: bool) -> None:
        super().set_tier(tier, active)
        self._write()

    def _write(self) -> None:
        payload = {
            "generatedAt": dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat(),
            "sensors": {t.value: v for t, v in self.states().items()},
        }
        try:
            atomic_write_json(self.path, payload)
        except OSError:
            log.exception("Sensor state file write failed (%s)", self.path)
