from __future__ import annotations

import datetime as dt
from typing import Iterable

from .alerts import Alert, Tier

NATIONWIDE = "ברחבי הארץ"

FRESH_PAST = dt.timedelta(seconds=60)
FRESH_FUTURE = dt.timedelta(seconds=10)


class GeoTimeFilter:
    """
    Relevance decisions for a canonical alert.

    An empty city list means "monitor everything". The nationwide sentinel is always
    relevant. Early warnings are additionally gated to the local hours [start, end).
    """

    def __init__(
        self,
        cities: Iterable[str],
        tz: dt.tzinfo,
        *,
        early_warning_hours: tuple[int, int] = (10, 20),
        nationwide: str = NATIONWIDE,
        fresh_past: dt.timedelta = FRESH_PAST,
        fresh_future: dt.timedelta = FRESH_FUTURE,
    ) -> None:
        self.cities = frozenset(c.strip() for c in cities if c and c.strip())
        self.tz = tz
        self.start_hour, self.end_hour = early_warning_hours
        self.nationwide = nationwide
        self.fresh_past = fresh_past
        self.fresh_future = fresh_future

    @property
    def monitor_all(self) -> bool:
        return not self.cities

    def area_relevant(self, area: str) -> bool:
        a = (area or "").strip()
        if not a:
            return False
        if a == self.nationwide or self.monitor_all:
            return True
        return a in self.cities

    def relevant_areas(self, areas: Iterable[str]) -> tuple[str, ...]:
        return tuple(a for a in areas if self.area_relevant(a))

    def is_fresh(self, alert: Alert, now: dt.datetime) -> bool:
        return (now - self.fresh_past) <= alert.occurred_at <= (now + self.fresh_future)

    def within_hours(self, now: dt.datetime) -> bool:
        hour = now.astimezone(self.tz).hour
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        # window wraps midnight (e.g. 22 -> 6)
        return hour >= self.start_hour or hour < self.end_hour

    def is_relevant(self, alert: Alert, now: dt.datetime) -> bool:
        if not self.relevant_areas(alert.areas):
            return False
        if not self.is_fresh(alert, now):
            return False
        if alert.tier is Tier.EARLY_WARNING and not self.within_hours(now):
            return False
        return True
