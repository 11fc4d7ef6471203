#!/usr/bin/env python3
"""
Unified configuration loader for the segment stitcher.

Search order (every file found is deep-merged, earlier entries win):
  1) STITCHER_CONFIG (env, absolute or relative to CWD)
  2) /etc/stitcher/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) ./config.yaml (current working directory)

Environment variables override file values when present. The merged mapping
is turned into a single ``StitcherSettings`` object at startup and handed to
every component; nothing below the daemon reads the environment.
"""
from __future__ import annotations
import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

_DEFAULTS: Dict[str, Any] = {
    "stream": {
        "id": "default",
        "output_root": "/out",
    },
    "audio": {
        "sample_rate": 48000,
        "channels": 2,
        "bitrate": "128k",
    },
    "segments": {
        "duration_seconds": 60,
        "tolerance_seconds": 2.0,
        "history_hours": 12,
        "safety_margin_minutes": 1,
        "retention_buffer_minutes": 5,
    },
    "scheduler": {
        "interval_seconds": 10.0,
    },
    "tools": {
        "ffmpeg": "ffmpeg",
        "ffprobe": "ffprobe",
        "probe_timeout_seconds": 15.0,
        "encode_timeout_seconds": 120.0,
    },
    "manifests": {
        "bandwidth": 160000,
        "codecs": "mp4a.40.2",
        "minimum_update_period": "PT30S",
    },
    "web_server": {
        "enabled": False,
        "listen_host": "0.0.0.0",
        "listen_port": 8080,
        "max_heartbeat_age_seconds": 60.0,
    },
    "logging": {
        "dev_mode": False  # if True or ENV DEV=1, enable verbose debug
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        print(f"[config] WARNING: ignoring unreadable config {path}: {exc}", flush=True)
        return {}
    if isinstance(data, dict):
        return data
    return {}


def _candidate_search_paths(project_root: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("STITCHER_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser())
    search.extend(
        [
            Path("/etc/stitcher/config.yaml"),
            project_root / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    if "STREAM_ID" in os.environ:
        value = os.environ["STREAM_ID"].strip()
        if value:
            cfg.setdefault("stream", {})["id"] = value
    if "OUT_ROOT" in os.environ:
        value = os.environ["OUT_ROOT"].strip()
        if value:
            cfg.setdefault("stream", {})["output_root"] = value
    if "AAC_BITRATE" in os.environ:
        value = os.environ["AAC_BITRATE"].strip()
        if value:
            cfg.setdefault("audio", {})["bitrate"] = value
    if "AUDIO_CH" in os.environ:
        try:
            channels = int(os.environ["AUDIO_CH"])
        except ValueError:
            pass
        else:
            cfg.setdefault("audio", {})["channels"] = max(1, min(2, channels))

    env_map = {
        "AUDIO_SR": ("audio", "sample_rate", int),
        "SEG_SECONDS": ("segments", "duration_seconds", int),
        "HISTORY_HOURS": ("segments", "history_hours", int),
        "STITCH_INTERVAL_SEC": ("scheduler", "interval_seconds", float),
        "STITCHER_WEB_PORT": ("web_server", "listen_port", int),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key in os.environ:
            try:
                cfg.setdefault(section, {})[key] = cast(os.environ[env_key])
            except ValueError:
                pass


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # <root>/stitcher -> <root>
    project_root = Path(__file__).resolve().parent.parent

    search = _candidate_search_paths(project_root)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active
    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


@dataclass(frozen=True)
class StitcherSettings:
    """Immutable runtime settings shared by every stitcher component."""

    stream_id: str = "default"
    output_root: Path = Path("/out")
    sample_rate: int = 48000
    channels: int = 2
    bitrate: str = "128k"
    segment_seconds: int = 60
    tolerance_seconds: float = 2.0
    history_hours: int = 12
    safety_margin_minutes: int = 1
    retention_buffer_minutes: int = 5
    interval_seconds: float = 10.0
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout: float = 15.0
    encode_timeout: float = 120.0
    bandwidth: int = 160000
    codecs: str = "mp4a.40.2"
    minimum_update_period: str = "PT30S"
    web_enabled: bool = False
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    max_heartbeat_age: float = 60.0
    dev_mode: bool = False

    def __post_init__(self) -> None:
        if not self.stream_id or "/" in self.stream_id or self.stream_id in {".", ".."}:
            raise ValueError(f"invalid stream id: {self.stream_id!r}")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        if self.segment_seconds <= 0:
            raise ValueError("segment duration must be positive")
        if self.tolerance_seconds < 0 or self.tolerance_seconds >= self.segment_seconds:
            raise ValueError("tolerance must be non-negative and shorter than a segment")
        # Keys are HHMM, so a window may not wrap onto itself.
        if not 0 < self.history_hours < 24:
            raise ValueError("history_hours must be between 1 and 23")
        if self.safety_margin_minutes < 0 or self.retention_buffer_minutes < 0:
            raise ValueError("safety margin and retention buffer must be non-negative")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

    @property
    def window_minutes(self) -> int:
        return self.history_hours * 60

    @property
    def min_ok_seconds(self) -> float:
        return self.segment_seconds - self.tolerance_seconds

    @property
    def stream_dir(self) -> Path:
        return self.output_root / self.stream_id

    @classmethod
    def from_cfg(cls, cfg: Dict[str, Any]) -> "StitcherSettings":
        stream = cfg.get("stream") or {}
        audio = cfg.get("audio") or {}
        segments = cfg.get("segments") or {}
        scheduler = cfg.get("scheduler") or {}
        tools = cfg.get("tools") or {}
        manifests = cfg.get("manifests") or {}
        web = cfg.get("web_server") or {}
        logging_cfg = cfg.get("logging") or {}
        return cls(
            stream_id=str(stream.get("id", cls.stream_id)).strip(),
            output_root=Path(str(stream.get("output_root", cls.output_root))),
            sample_rate=int(audio.get("sample_rate", cls.sample_rate)),
            channels=int(audio.get("channels", cls.channels)),
            bitrate=str(audio.get("bitrate", cls.bitrate)),
            segment_seconds=int(segments.get("duration_seconds", cls.segment_seconds)),
            tolerance_seconds=float(segments.get("tolerance_seconds", cls.tolerance_seconds)),
            history_hours=int(segments.get("history_hours", cls.history_hours)),
            safety_margin_minutes=int(
                segments.get("safety_margin_minutes", cls.safety_margin_minutes)
            ),
            retention_buffer_minutes=int(
                segments.get("retention_buffer_minutes", cls.retention_buffer_minutes)
            ),
            interval_seconds=float(scheduler.get("interval_seconds", cls.interval_seconds)),
            ffmpeg_path=str(tools.get("ffmpeg", cls.ffmpeg_path)),
            ffprobe_path=str(tools.get("ffprobe", cls.ffprobe_path)),
            probe_timeout=float(tools.get("probe_timeout_seconds", cls.probe_timeout)),
            encode_timeout=float(tools.get("encode_timeout_seconds", cls.encode_timeout)),
            bandwidth=int(manifests.get("bandwidth", cls.bandwidth)),
            codecs=str(manifests.get("codecs", cls.codecs)),
            minimum_update_period=str(
                manifests.get("minimum_update_period", cls.minimum_update_period)
            ),
            web_enabled=bool(web.get("enabled", cls.web_enabled)),
            web_host=str(web.get("listen_host", cls.web_host)),
            web_port=int(web.get("listen_port", cls.web_port)),
            max_heartbeat_age=float(
                web.get("max_heartbeat_age_seconds", cls.max_heartbeat_age)
            ),
            dev_mode=bool(logging_cfg.get("dev_mode", cls.dev_mode)),
        )


def load_settings(*, reload: bool = False) -> StitcherSettings:
    """Build settings from the merged YAML/env configuration."""
    return StitcherSettings.from_cfg(reload_cfg() if reload else get_cfg())
