from __future__ import annotations

import datetime as dt
import enum
import json
from dataclasses import dataclass
from typing import Any
from zoneinfo import ZoneInfo

from .alerts import (
    EARLY_WARNING_CATEGORY,
    FLASH_ALERT_CATEGORY,
    PUSH_ALL_CLEAR_TYPE,
    PUSH_TEST_TYPE,
    Alert,
    Tier,
)


class SourceKind(str, enum.Enum):
    PUSH = "push"
    HISTORY = "history"


class RejectReason(str, enum.Enum):
    MALFORMED = "malformed"
    NON_MATCHING_CATEGORY = "non-matching-category"
    NON_MATCHING_TITLE = "non-matching-title"
    ALL_CLEAR = "all-clear-signal"


@dataclass(frozen=True, slots=True)
class Normalized:
    alert: Alert | None = None
    reason: RejectReason | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.alert is not None

    @classmethod
    def reject(cls, reason: RejectReason, detail: str = "") -> "Normalized":
        return cls(alert=None, reason=reason, detail=detail)


_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M")


def parse_alert_date(value: Any, tz: dt.tzinfo) -> dt.datetime | None:
    """
    Parse a history `alertDate`.

    The feed sends local wall time ("2024-06-01 12:34:56"); ISO forms with a `T`
    separator or an explicit offset are accepted too. Naive values get `tz`.
    """
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None

    parsed: dt.datetime | None = None
    for fmt in _DATE_FORMATS:
        try:
            parsed = dt.datetime.strptime(s, fmt)
            break
        except ValueError:
            continue

    if parsed is None:
        try:
            parsed = dt.datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _split_areas(raw: str) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        a = part.strip()
        if not a or a in seen:
            continue
        seen.add(a)
        out.append(a)
    return tuple(out)


def normalize_push(raw: Any, *, now: dt.datetime | None = None) -> Normalized:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return Normalized.reject(RejectReason.MALFORMED, f"undecodable bytes: {e}")

    payload = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError as e:
            return Normalized.reject(RejectReason.MALFORMED, f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return Normalized.reject(RejectReason.MALFORMED, "payload is not an object")

    alert_type = _as_int(payload.get("alert_type"))

    # All-clear messages are allowed to omit areas.
    if alert_type == PUSH_ALL_CLEAR_TYPE:
        return Normalized.reject(RejectReason.ALL_CLEAR, "all-clear")

    areas_raw = payload.get("areas")
    if not isinstance(areas_raw, str) or not areas_raw.strip():
        return Normalized.reject(RejectReason.MALFORMED, "missing areas")

    areas = _split_areas(areas_raw)
    if not areas:
        return Normalized.reject(RejectReason.MALFORMED, "empty areas")

    if alert_type is None:
        return Normalized.reject(RejectReason.MALFORMED, "missing alert_type")

    return Normalized(
        alert=Alert(
            tier=Tier.PRIMARY,
            areas=areas,
            occurred_at=now or dt.datetime.now(dt.timezone.utc),
            raw_category=alert_type,
            raw_title=str(payload.get("title") or ""),
            is_test=alert_type == PUSH_TEST_TYPE,
        )
    )


def normalize_history(
    record: Any,
    *,
    early_warning_title: str,
    flash_title: str,
    tz: dt.tzinfo | None = None,
) -> Normalized:
    if not isinstance(record, dict):
        return Normalized.reject(RejectReason.MALFORMED, "record is not an object")

    category = _as_int(record.get("category"))
    if category is None:
        return Normalized.reject(RejectReason.MALFORMED, "missing category")

    if category == EARLY_WARNING_CATEGORY:
        tier, expected = Tier.EARLY_WARNING, early_warning_title
    elif category == FLASH_ALERT_CATEGORY:
        tier, expected = Tier.FLASH_ALERT, flash_title
    else:
        return Normalized.reject(RejectReason.NON_MATCHING_CATEGORY, f"category={category}")

    title = record.get("title")
    if not isinstance(title, str):
        return Normalized.reject(RejectReason.MALFORMED, "missing title")
    if title != expected:
        return Normalized.reject(RejectReason.NON_MATCHING_TITLE, f"category={category} title={title!r}")

    area = record.get("data")
    if not isinstance(area, str) or not area.strip():
        return Normalized.reject(RejectReason.MALFORMED, "missing data")

    occurred_at = parse_alert_date(record.get("alertDate"), tz or ZoneInfo("Asia/Jerusalem"))
    if occurred_at is None:
        return Normalized.reject(RejectReason.MALFORMED, f"bad alertDate {record.get('alertDate')!r}")

    return Normalized(
        alert=Alert(
            tier=tier,
            areas=(area.strip(),),
            occurred_at=occurred_at,
            raw_category=category,
            raw_title=title,
        )
    )


def normalize(source: SourceKind, raw: Any, **kwargs: Any) -> Normalized:
    if source is SourceKind.PUSH:
        return normalize_push(raw, **kwargs)
    if source is SourceKind.HISTORY:
        return normalize_history(raw, **kwargs)
    return Normalized.reject(RejectReason.MALFORMED, f"unknown source {source!r}")
