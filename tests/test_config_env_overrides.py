"""Tests covering YAML loading and environment variable overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from stitcher import config as config_module
from stitcher.config import StitcherSettings

_ENV_NAMES = (
    "STITCHER_CONFIG",
    "DEV",
    "STREAM_ID",
    "OUT_ROOT",
    "AAC_BITRATE",
    "AUDIO_CH",
    "AUDIO_SR",
    "SEG_SECONDS",
    "HISTORY_HOURS",
    "STITCH_INTERVAL_SEC",
    "STITCHER_WEB_PORT",
)


def _reset_config_state(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)


def test_yaml_file_is_merged_over_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("stream:\n  id: harbour\naudio:\n  bitrate: 96k\n")

    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(config_path))

    cfg = config_module.get_cfg()

    assert cfg["stream"]["id"] == "harbour"
    assert cfg["stream"]["output_root"] == "/out"
    assert cfg["audio"]["bitrate"] == "96k"
    assert cfg["audio"]["sample_rate"] == 48000
    assert config_module.active_config_path() == config_path.resolve()
    assert config_module.search_paths()[0] == config_path.resolve()


def test_env_overrides_win_over_file(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("stream:\n  id: harbour\nsegments:\n  history_hours: 3\n")

    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(config_path))
    monkeypatch.setenv("STREAM_ID", "radio1")
    monkeypatch.setenv("OUT_ROOT", str(tmp_path / "media"))
    monkeypatch.setenv("AUDIO_SR", "44100")
    monkeypatch.setenv("SEG_SECONDS", "30")
    monkeypatch.setenv("HISTORY_HOURS", "6")
    monkeypatch.setenv("STITCH_INTERVAL_SEC", "2.5")
    monkeypatch.setenv("DEV", "1")

    settings = config_module.load_settings()

    assert settings.stream_id == "radio1"
    assert settings.stream_dir == tmp_path / "media" / "radio1"
    assert settings.sample_rate == 44100
    assert settings.segment_seconds == 30
    assert settings.history_hours == 6
    assert settings.window_minutes == 360
    assert settings.min_ok_seconds == 28.0
    assert settings.interval_seconds == 2.5
    assert settings.dev_mode is True


def test_audio_env_channels_clamped(monkeypatch, tmp_path: Path) -> None:
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("AUDIO_CH", "99")

    assert config_module.get_cfg()["audio"]["channels"] == 2

    monkeypatch.setenv("AUDIO_CH", "0")
    assert config_module.reload_cfg()["audio"]["channels"] == 1


def test_unparseable_env_values_are_ignored(monkeypatch, tmp_path: Path) -> None:
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("STITCH_INTERVAL_SEC", "soon")
    monkeypatch.setenv("AUDIO_CH", "stereo")
    monkeypatch.setenv("STITCHER_WEB_PORT", "http")

    cfg = config_module.get_cfg()

    assert cfg["scheduler"]["interval_seconds"] == 10.0
    assert cfg["audio"]["channels"] == 2
    assert cfg["web_server"]["listen_port"] == 8080


def test_broken_yaml_falls_back_to_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("stream: [unterminated\n")

    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(config_path))

    assert config_module.get_cfg()["stream"]["id"] == "default"


def test_defaults_produce_valid_settings() -> None:
    settings = StitcherSettings.from_cfg(config_module._DEFAULTS)

    assert settings.window_minutes == 720
    assert settings.min_ok_seconds == 58.0
    assert settings.safety_margin_minutes == 1
    assert settings.retention_buffer_minutes == 5


@pytest.mark.parametrize(
    "overrides",
    [
        {"history_hours": 0},
        {"history_hours": 24},
        {"channels": 6},
        {"stream_id": ""},
        {"stream_id": "../escape"},
        {"segment_seconds": 0},
        {"tolerance_seconds": 60.0},
        {"interval_seconds": 0},
        {"safety_margin_minutes": -1},
    ],
)
def test_invalid_settings_are_rejected(overrides) -> None:
    with pytest.raises(ValueError):
        StitcherSettings(**overrides)


def test_load_settings_reload_picks_up_changed_file(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("stream:\n  id: first\n")

    _reset_config_state(monkeypatch)
    monkeypatch.setenv("STITCHER_CONFIG", str(config_path))

    assert config_module.load_settings().stream_id == "first"

    config_path.write_text("stream:\n  id: second\n")
    assert config_module.load_settings().stream_id == "first"
    assert config_module.load_settings(reload=True).stream_id == "second"
