"""
Unit tests for playback fan-out, volume policy and the device registry.
"""

import asyncio
import json

import pytest

from redalert.alerts import Tier
from redalert.devices import DeviceRegistry, PlaybackDevice
from redalert.media import MediaResolver, UnknownMediaError
from redalert.playback import PlaybackCoordinator
from redalert.sensors import StateFileSensorSink, atomic_write_json

from .conftest import FakePlayer, make_device


def _coordinator(registry, make_config, **playback):
    cfg = make_config(playback=playback)
    return PlaybackCoordinator(registry, MediaResolver("http://media.local:8095"), cfg.playback)


# =============================================================================
# FAN-OUT AND RETRIES
# =============================================================================

class TestFanOut:

    def test_plays_on_every_device(self, registry, make_config):
        a, b = FakePlayer(), FakePlayer()
        registry.on_discovered(make_device("10.0.0.1", player=a))
        registry.on_discovered(make_device("10.0.0.2", player=b, video=False))
        coord = _coordinator(registry, make_config)

        results = asyncio.run(coord.play(Tier.PRIMARY, ("Tel Aviv",)))

        assert all(r.ok for r in results)
        assert a.plays == [("http://media.local:8095/alert-video", "video/mp4")]
        assert b.plays == [("http://media.local:8095/alert-sound", "audio/mp3")]

    def test_test_alert_uses_test_media(self, registry, make_config):
        p = FakePlayer()
        registry.on_discovered(make_device("10.0.0.1", player=p, video=False))
        asyncio.run(_coordinator(registry, make_config).play(Tier.PRIMARY, (), is_test=True))
        assert p.plays[0][0].endswith("/test-sound")

    def test_four_failures_give_up_without_affecting_others(self, registry, make_config):
        bad, good = FakePlayer(fail_plays=10), FakePlayer()
        registry.on_discovered(make_device("10.0.0.1", player=bad))
        registry.on_discovered(make_device("10.0.0.2", player=good))

        results = asyncio.run(_coordinator(registry, make_config).play(Tier.PRIMARY, ()))
        by_id = {r.device_id: r for r in results}

        assert len(bad.plays) == 4
        assert by_id["10.0.0.1"].ok is False
        assert by_id["10.0.0.1"].attempts == 4
        assert bad.volumes == []
        assert by_id["10.0.0.2"].ok is True
        assert by_id["10.0.0.2"].attempts == 1
        assert good.volumes == [30]

    def test_recovers_on_retry(self, registry, make_config):
        flaky = FakePlayer(fail_plays=2)
        registry.on_discovered(make_device("10.0.0.1", player=flaky))
        (result,) = asyncio.run(_coordinator(registry, make_config).play(Tier.PRIMARY, ()))
        assert result.ok
        assert result.attempts == 3

    def test_volume_failure_is_not_retried(self, registry, make_config):
        p = FakePlayer(fail_volume=True)
        registry.on_discovered(make_device("10.0.0.1", player=p))
        (result,) = asyncio.run(_coordinator(registry, make_config).play(Tier.PRIMARY, ()))
        assert result.ok
        assert len(p.plays) == 1
        assert "volume" in result.error

    def test_empty_registry_is_not_an_error(self, registry, make_config):
        assert asyncio.run(_coordinator(registry, make_config).play(Tier.PRIMARY, ())) == []

    def test_unknown_media_skips_playback(self, registry, make_config):
        p = FakePlayer()
        registry.on_discovered(make_device("10.0.0.1", player=p))
        cfg = make_config()
        coord = PlaybackCoordinator(registry, MediaResolver("http://m", routes={}), cfg.playback)
        assert asyncio.run(coord.play(Tier.FLASH_ALERT, ())) == []
        assert p.plays == []


# =============================================================================
# VOLUME POLICY
# =============================================================================

class TestVolumePolicy:

    def test_tier_reductions(self, registry, make_config):
        coord = _coordinator(registry, make_config, default_volume=40, early_warning_reduction=30, flash_reduction=20)
        dev = make_device("10.0.0.1")
        assert coord.effective_volume(dev, Tier.PRIMARY) == 40
        assert coord.effective_volume(dev, Tier.EARLY_WARNING) == 10
        assert coord.effective_volume(dev, Tier.FLASH_ALERT) == 20

    def test_reduction_floored_at_zero(self, registry, make_config):
        coord = _coordinator(registry, make_config, default_volume=20, early_warning_reduction=50)
        assert coord.effective_volume(make_device("10.0.0.1"), Tier.EARLY_WARNING) == 0

    def test_per_device_override_by_name_or_address(self, registry, make_config):
        coord = _coordinator(registry, make_config, device_volumes={"Kitchen": 70, "10.0.0.9": 55})
        assert coord.effective_volume(make_device("10.0.0.1", name="Kitchen"), Tier.PRIMARY) == 70
        assert coord.effective_volume(make_device("10.0.0.9"), Tier.PRIMARY) == 55
        assert coord.effective_volume(make_device("10.0.0.9"), Tier.FLASH_ALERT) == 35

    def test_early_warning_volume_applied_after_play(self, registry, make_config):
        p = FakePlayer()
        registry.on_discovered(make_device("10.0.0.1", player=p))
        coord = _coordinator(registry, make_config, default_volume=50, early_warning_reduction=30)
        (result,) = asyncio.run(coord.play(Tier.EARLY_WARNING, ("A",)))
        assert p.plays[0][0].endswith("/early-warning-video")
        assert p.volumes == [20]
        assert result.volume == 20


# =============================================================================
# DEVICE REGISTRY / MEDIA / SENSORS
# =============================================================================

class TestDeviceRegistry:

    def test_duplicate_address_first_seen_wins(self):
        reg = DeviceRegistry()
        assert reg.on_discovered(make_device("10.0.0.1", name="First")) is True
        assert reg.on_discovered(make_device("10.0.0.1", name="Second")) is False
        assert [d.display_name for d in reg.snapshot()] == ["First"]

    def test_incapable_devices_rejected(self):
        reg = DeviceRegistry()

        class Mute:
            async def play(self, url, content_type):
                pass

        assert reg.on_discovered(PlaybackDevice(id="10.0.0.1", display_name="x", player=Mute())) is False
        assert reg.on_discovered(make_device("", name="no address")) is False
        assert reg.on_discovered(PlaybackDevice(id="10.0.0.2", display_name=" ", player=FakePlayer())) is False
        assert len(reg) == 0

    def test_clear_allows_rediscovery(self):
        reg = DeviceRegistry()
        reg.on_discovered(make_device("10.0.0.1", name="Old"))
        reg.clear()
        reg.on_discovered(make_device("10.0.0.1", name="New"))
        assert [d.display_name for d in reg.snapshot()] == ["New"]

    def test_snapshot_is_a_copy(self):
        reg = DeviceRegistry()
        reg.on_discovered(make_device("10.0.0.1"))
        snap = reg.snapshot()
        reg.on_discovered(make_device("10.0.0.2"))
        assert len(snap) == 1


class TestMediaResolver:

    def test_routes(self):
        r = MediaResolver("http://host:8095/")
        assert r.resolve("alert") == "http://host:8095/alert-sound"
        assert r.resolve("test", video=True) == "http://host:8095/test-video"
        assert r.resolve("flash-shelter") == "http://host:8095/flash-shelter-sound"

    def test_unknown_key(self):
        with pytest.raises(UnknownMediaError):
            MediaResolver("http://h").resolve("nope")


class TestStateFileSink:

    def test_state_file_tracks_transitions(self, tmp_path):
        path = tmp_path / "state" / "sensors.json"
        sink = StateFileSensorSink(str(path))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["sensors"] == {"primary": False, "early_warning": False, "flash_alert": False}

        sink.set_tier(Tier.FLASH_ALERT, True)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["sensors"]["flash_alert"] is True
        assert sink.get_tier(Tier.FLASH_ALERT) is True

    def test_failed_replace_leaves_old_file_and_no_temp(self, tmp_path, monkeypatch):
        path = tmp_path / "sensors.json"
        atomic_write_json(str(path), {"v": 1})

        def refuse(src, dst):
            raise OSError("read-only")

        monkeypatch.setattr("redalert.sensors.os.replace", refuse)
        with pytest.raises(OSError):
            atomic_write_json(str(path), {"v": 2})

        assert json.loads(path.read_text(encoding="utf-8")) == {"v": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["sensors.json"]
