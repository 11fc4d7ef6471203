"""Silent replacement segments for slots without usable media."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stitcher.layout import SegmentFormat
from stitcher.media_tools import MediaToolError, MediaTools


class GapRepairGenerator:
    """Synthesizes silence matching the stream's segment parameters."""

    def __init__(
        self,
        tools: MediaTools,
        *,
        duration_seconds: float,
        sample_rate: int,
        channels: int,
        bitrate: str,
    ) -> None:
        self.tools = tools
        self.duration_seconds = float(duration_seconds)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.bitrate = bitrate
        self._log = logging.getLogger("stitcher.gap_repair")

    @classmethod
    def from_settings(cls, tools: MediaTools, settings) -> "GapRepairGenerator":
        return cls(
            tools,
            duration_seconds=settings.segment_seconds,
            sample_rate=settings.sample_rate,
            channels=settings.channels,
            bitrate=settings.bitrate,
        )

    def synthesize(self, target: Path, fmt: SegmentFormat) -> bool:
        """Write a silent segment to ``target``; return False on failure.

        The segment is encoded into a hidden sibling file and renamed into
        place, so a poller never sees a partially written segment.
        """
        target = Path(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._log.error("Failed to create directory for %s: %s", target, exc)
            return False

        tmp_path = target.with_name(f".{target.name}.partial")
        try:
            self.tools.render_silence(
                tmp_path,
                fmt,
                duration_seconds=self.duration_seconds,
                sample_rate=self.sample_rate,
                channels=self.channels,
                bitrate=self.bitrate,
            )
            os.replace(tmp_path, target)
        except (MediaToolError, OSError) as exc:
            self._log.error("Silence synthesis failed for %s: %s", target, exc)
            self._discard(tmp_path)
            return False
        except Exception:  # noqa: BLE001 - one bad slot must not abort the cycle
            self._log.exception("Unexpected error synthesizing %s", target)
            self._discard(tmp_path)
            return False
        return True

    def _discard(self, tmp_path: Path) -> None:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            self._log.warning("Could not remove partial segment %s: %s", tmp_path, exc)
