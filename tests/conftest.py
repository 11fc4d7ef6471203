from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from stitcher.config import StitcherSettings
from stitcher.layout import SegmentFormat
from stitcher.media_tools import MediaToolError, MediaTools

NOW = datetime(2024, 1, 1, 10, 1, 30, tzinfo=timezone.utc)


def write_segment(path: Path, seconds: float, label: str = "media") -> Path:
    """Drop a stand-in segment whose duration the fake tools can read back."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(f"{label} {seconds}".encode("ascii"))
    return path


class FakeMediaTools(MediaTools):
    """In-process stand-in for ffmpeg/ffprobe.

    Rendered files contain ``silence <seconds>``; probing parses that back,
    so rename-into-place and re-probing behave like the real tools.
    """

    def __init__(self) -> None:
        self.probe_calls: list[Path] = []
        self.render_calls: list[dict] = []
        self.fail_render: set[str] = set()
        self.probe_errors: set[str] = set()
        self.rendered_seconds: float | None = None

    def probe_duration(self, path: Path) -> float:
        path = Path(path)
        self.probe_calls.append(path)
        if path.name in self.probe_errors:
            raise MediaToolError(f"probe failed for {path.name}")
        try:
            _label, value = path.read_bytes().split(b" ", 1)
            return float(value)
        except (OSError, ValueError) as exc:
            raise MediaToolError(f"unreadable segment {path.name}") from exc

    def render_silence(
        self,
        target: Path,
        fmt: SegmentFormat,
        *,
        duration_seconds: float,
        sample_rate: int,
        channels: int,
        bitrate: str,
    ) -> None:
        target = Path(target)
        self.render_calls.append(
            {
                "target": target,
                "format": fmt,
                "duration_seconds": duration_seconds,
                "sample_rate": sample_rate,
                "channels": channels,
                "bitrate": bitrate,
            }
        )
        if any(pattern in target.name for pattern in self.fail_render):
            target.write_bytes(b"half")
            raise MediaToolError(f"encoder exploded on {target.name}")
        seconds = self.rendered_seconds if self.rendered_seconds is not None else duration_seconds
        target.write_bytes(f"silence {seconds}".encode("ascii"))

    def rendered_names(self) -> list[str]:
        return [call["target"].name for call in self.render_calls]


@pytest.fixture
def fake_tools() -> FakeMediaTools:
    return FakeMediaTools()


@pytest.fixture
def settings(tmp_path) -> StitcherSettings:
    return StitcherSettings(stream_id="radio1", output_root=tmp_path / "out", history_hours=1)
