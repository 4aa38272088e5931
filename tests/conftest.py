"""
pytest configuration and shared fixtures.

Async code is driven with asyncio.run() inside plain test functions.
"""

import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from redalert.alerts import Tier
from redalert.config import build_config
from redalert.devices import DeviceRegistry, PlaybackDevice, PlaybackError


IL_TZ = ZoneInfo("Asia/Jerusalem")
EW_TITLE = "בדקות הקרובות צפויות להתקבל התרעות באזורך"
FLASH_TITLE = "שהייה בסמיכות למרחב מוגן"


# =============================================================================
# FAKES
# =============================================================================

class RecordingSink:
    """Sensor sink that remembers every transition."""

    def __init__(self):
        self.events = []
        self.state = {t: False for t in Tier}

    def set_tier(self, tier, active):
        self.events.append((tier, active))
        self.state[tier] = active

    def get_tier(self, tier):
        return self.state[tier]

    def count(self, tier, active):
        return sum(1 for e in self.events if e == (tier, active))


class FakePlayer:
    """Playable that fails its first `fail_plays` play() calls."""

    def __init__(self, fail_plays=0, fail_volume=False):
        self.fail_plays = fail_plays
        self.fail_volume = fail_volume
        self.plays = []
        self.volumes = []

    async def play(self, url, content_type):
        self.plays.append((url, content_type))
        if len(self.plays) <= self.fail_plays:
            raise PlaybackError("device unreachable")

    async def set_volume(self, percent):
        if self.fail_volume:
            raise PlaybackError("volume rejected")
        self.volumes.append(percent)


def make_device(address, name=None, player=None, video=True):
    return PlaybackDevice(
        id=address,
        display_name=name or f"Speaker {address}",
        player=player or FakePlayer(),
        video=video,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def noon():
    """A moment inside the default early-warning hours (10-20 local)."""
    return dt.datetime(2024, 6, 1, 12, 0, 0, tzinfo=IL_TZ)


@pytest.fixture
def make_config():
    def _make(**sections):
        raw = {
            "monitor": {"cities": ["Tel Aviv"], "timezone": "Asia/Jerusalem"},
            "tiers": {
                "timeout_seconds": 30,
                "early_warning_title": EW_TITLE,
                "flash_title": FLASH_TITLE,
            },
            "playback": {"retry_backoff_seconds": 0.01},
            "media": {"base_url": "http://media.local:8095"},
        }
        for key, value in sections.items():
            raw.setdefault(key, {}).update(value)
        return build_config(raw)

    return _make
