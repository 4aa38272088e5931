from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable

log = logging.getLogger("redalert")

RETENTION = dt.timedelta(minutes=120)
SWEEP_INTERVAL = dt.timedelta(minutes=60)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


@dataclass
class DedupWindow:
    """
    In-memory "seen" set of alert identities with a fixed retention horizon.

    The history feed returns overlapping windows on every poll; every category-matching
    record is recorded here so a poll never re-triggers an alert a previous poll already
    handled. Not thread-safe: call from the event loop only.
    """
    retention: dt.timedelta = RETENTION

    _seen: Dict[Hashable, dt.datetime] = field(default_factory=dict)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def seen_or_record(self, key: Hashable, now: dt.datetime | None = None) -> bool:
        """Return True and record `key` if it is new; False if already present."""
        if key in self._seen:
            return False
        self._seen[key] = now or _utcnow()
        return True

    def sweep(self, now: dt.datetime | None = None) -> int:
        cutoff = (now or _utcnow()) - self.retention
        dead = [k for k, t in self._seen.items() if t < cutoff]
        for k in dead:
            self._seen.pop(k, None)
        if dead:
            log.info("Dedup sweep: evicted %d of %d entries", len(dead), len(dead) + len(self._seen))
        return len(dead)
