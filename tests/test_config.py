"""
Unit tests for config loading, env overrides and range fallbacks.
"""

import pytest

from redalert.config import (
    DEFAULT_EARLY_WARNING_HOURS,
    DEFAULT_WS_URL,
    build_config,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "REDALERT_CITIES",
        "REDALERT_TIMEZONE",
        "REDALERT_WS_URL",
        "REDALERT_HISTORY_URL",
        "REDALERT_MEDIA_BASE_URL",
        "REDALERT_SENSOR_STATE_PATH",
    ):
        monkeypatch.delenv(key, raising=False)


class TestDefaults:

    def test_empty_config(self):
        cfg = build_config({})
        assert cfg.monitor.cities == []
        assert cfg.monitor.timezone == "Asia/Jerusalem"
        assert cfg.push.url == DEFAULT_WS_URL
        assert cfg.push.reconnect_interval_seconds == 5.0
        assert cfg.tiers.timeout_seconds == 30.0
        assert cfg.tiers.early_warning_hours == (10, 20)
        assert cfg.playback.default_volume == 30
        assert cfg.playback.early_warning_reduction == 30
        assert cfg.playback.flash_reduction == 20
        assert cfg.playback.retries == 3
        assert cfg.history.enabled is True

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "nope.yaml"))
        assert cfg.monitor.cities == []


class TestFallbacks:

    def test_out_of_range_volumes(self):
        cfg = build_config({
            "playback": {
                "default_volume": 150,
                "early_warning_reduction": -5,
                "flash_reduction": "loud",
                "device_volumes": {"Kitchen": 101, "Office": 45},
            }
        })
        assert cfg.playback.default_volume == 30
        assert cfg.playback.early_warning_reduction == 30
        assert cfg.playback.flash_reduction == 20
        assert cfg.playback.device_volumes == {"Kitchen": 30, "Office": 45}

    @pytest.mark.parametrize("start,end", [(25, 20), (10, 10), ("x", 20), (-1, 5)])
    def test_invalid_hours(self, start, end):
        cfg = build_config({"tiers": {"early_warning_start_hour": start, "early_warning_end_hour": end}})
        assert cfg.tiers.early_warning_hours == DEFAULT_EARLY_WARNING_HOURS

    def test_wrapping_hours_accepted(self):
        cfg = build_config({"tiers": {"early_warning_start_hour": 22, "early_warning_end_hour": 6}})
        assert cfg.tiers.early_warning_hours == (22, 6)

    def test_non_positive_timeout(self):
        assert build_config({"tiers": {"timeout_seconds": 0}}).tiers.timeout_seconds == 30.0


class TestLoading:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "monitor:\n"
            "  cities: [\"Tel Aviv\", \" Haifa \", \"\"]\n"
            "history:\n"
            "  enabled: false\n"
            "playback:\n"
            "  device_volumes:\n"
            "    Living Room: 60\n",
            encoding="utf-8",
        )
        cfg = load_config(str(path))
        assert cfg.monitor.cities == ["Tel Aviv", "Haifa"]
        assert cfg.history.enabled is False
        assert cfg.playback.device_volumes == {"Living Room": 60}

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("REDALERT_CITIES", "Acre, Eilat,")
        monkeypatch.setenv("REDALERT_WS_URL", "ws://localhost:9000/ws")
        monkeypatch.setenv("REDALERT_MEDIA_BASE_URL", "http://10.0.0.5:8095")
        cfg = build_config({"monitor": {"cities": ["Tel Aviv"]}})
        assert cfg.monitor.cities == ["Acre", "Eilat"]
        assert cfg.push.url == "ws://localhost:9000/ws"
        assert cfg.media.base_url == "http://10.0.0.5:8095"
