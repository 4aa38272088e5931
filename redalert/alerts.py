from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import Iterable, NamedTuple


class Tier(str, enum.Enum):
    PRIMARY = "primary"
    EARLY_WARNING = "early_warning"
    FLASH_ALERT = "flash_alert"


# Media keys understood by the media resolver.
MEDIA_ALERT = "alert"
MEDIA_TEST = "test"
MEDIA_EARLY_WARNING = "early-warning"
MEDIA_FLASH_SHELTER = "flash-shelter"

# Hard-coded by the history feed.
EARLY_WARNING_CATEGORY = 13
FLASH_ALERT_CATEGORY = 14

PUSH_TEST_TYPE = 0
PUSH_ALL_CLEAR_TYPE = 255

_TITLE_PREFIX_LEN = 32


def media_key_for(tier: Tier, is_test: bool = False) -> str:
    if tier is Tier.PRIMARY:
        return MEDIA_TEST if is_test else MEDIA_ALERT
    if tier is Tier.EARLY_WARNING:
        return MEDIA_EARLY_WARNING
    if tier is Tier.FLASH_ALERT:
        return MEDIA_FLASH_SHELTER
    raise ValueError(f"unknown tier: {tier!r}")


def _collapse(s: str) -> str:
    return " ".join(str(s or "").split())


def normalize_area(area: str) -> str:
    return _collapse(area).casefold()


@dataclass(frozen=True, slots=True)
class Alert:
    """
    Canonical alert produced by the feed normalizer.

    `areas` keeps feed order (push messages list several areas, history records one).
    """
    tier: Tier
    areas: tuple[str, ...]
    occurred_at: dt.datetime
    raw_category: int
    raw_title: str
    is_test: bool = False

    @property
    def media_key(self) -> str:
        return media_key_for(self.tier, self.is_test)

    def identity(self) -> "AlertIdentity":
        return AlertIdentity.of(self)


class AlertIdentity(NamedTuple):
    """Dedup key. Hashable; never used for ordering."""
    occurred_at_ms: int
    normalized_area: str
    raw_category: int
    title_prefix: str

    @classmethod
    def of(cls, alert: Alert) -> "AlertIdentity":
        return cls.from_parts(alert.occurred_at, alert.areas, alert.raw_category, alert.raw_title)

    @classmethod
    def from_parts(
        cls,
        occurred_at: dt.datetime,
        areas: Iterable[str],
        raw_category: int,
        raw_title: str,
    ) -> "AlertIdentity":
        ms = int(round(occurred_at.timestamp() * 1000))
        area = ",".join(normalize_area(a) for a in areas if normalize_area(a))
        return cls(
            occurred_at_ms=ms,
            normalized_area=area,
            raw_category=int(raw_category),
            title_prefix=_collapse(raw_title)[:_TITLE_PREFIX_LEN],
        )
