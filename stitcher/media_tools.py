"""Media tool capability used by the prober and the gap repair generator.

``MediaTools`` is the seam between the reconciliation logic and the external
ffmpeg/ffprobe binaries. Production code uses ``FFmpegMediaTools``; tests
substitute an in-process fake.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from stitcher.ffmpeg_io import duration_probe_command, silence_command
from stitcher.layout import SegmentFormat

_STDERR_TAIL = 800


class MediaToolError(RuntimeError):
    """Raised when an external media tool cannot produce a usable result."""


class MediaTools:
    """Minimal protocol for media probing and silence synthesis."""

    def probe_duration(self, path: Path) -> float:  # pragma: no cover - interface only
        """Return the container duration of ``path`` in seconds."""
        raise NotImplementedError

    def render_silence(
        self,
        target: Path,
        fmt: SegmentFormat,
        *,
        duration_seconds: float,
        sample_rate: int,
        channels: int,
        bitrate: str,
    ) -> None:  # pragma: no cover - interface only
        """Encode ``duration_seconds`` of silence into ``target``."""
        raise NotImplementedError


def _tail(text: str | bytes | None) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    text = text.strip()
    return text[-_STDERR_TAIL:]


class FFmpegMediaTools(MediaTools):
    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        *,
        probe_timeout: float = 15.0,
        encode_timeout: float = 120.0,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.probe_timeout = probe_timeout
        self.encode_timeout = encode_timeout
        self._log = logging.getLogger("stitcher.media_tools")

    @classmethod
    def from_settings(cls, settings) -> "FFmpegMediaTools":
        return cls(
            settings.ffmpeg_path,
            settings.ffprobe_path,
            probe_timeout=settings.probe_timeout,
            encode_timeout=settings.encode_timeout,
        )

    def probe_duration(self, path: Path) -> float:
        cmd = duration_probe_command(self.ffprobe_path, str(path))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.probe_timeout,
            )
        except FileNotFoundError as exc:
            raise MediaToolError(f"{self.ffprobe_path} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise MediaToolError(f"ffprobe timed out after {self.probe_timeout}s") from exc
        except subprocess.CalledProcessError as exc:
            raise MediaToolError(
                f"ffprobe failed ({exc.returncode}): {_tail(exc.stderr)}"
            ) from exc
        except OSError as exc:
            raise MediaToolError(f"ffprobe could not run: {exc}") from exc

        duration_text = (result.stdout or "").strip()
        try:
            duration = float(duration_text)
        except ValueError as exc:
            raise MediaToolError(f"unparseable ffprobe duration: {duration_text!r}") from exc
        if duration != duration or duration < 0:
            raise MediaToolError(f"invalid ffprobe duration: {duration_text!r}")
        return duration

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
        cmd = silence_command(
            self.ffmpeg_path,
            str(target),
            fmt,
            duration_seconds=duration_seconds,
            sample_rate=sample_rate,
            channels=channels,
            bitrate=bitrate,
        )
        self._log.debug("Launching ffmpeg: %s", " ".join(cmd))
        try:
            subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=True,
                timeout=self.encode_timeout,
            )
        except FileNotFoundError as exc:
            raise MediaToolError(f"{self.ffmpeg_path} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise MediaToolError(f"ffmpeg timed out after {self.encode_timeout}s") from exc
        except subprocess.CalledProcessError as exc:
            raise MediaToolError(
                f"ffmpeg failed ({exc.returncode}): {_tail(exc.stderr)}"
            ) from exc
        except OSError as exc:
            raise MediaToolError(f"ffmpeg could not run: {exc}") from exc
