"""On-disk layout of one stitched stream."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

from stitcher.slot_keys import Slot

HEARTBEAT_NAME = "stitcher_heartbeat.txt"
MEDIA_PLAYLIST_NAME = "playlist.m3u8"
MASTER_PLAYLIST_NAME = "master.m3u8"
MPD_NAME = "manifest.mpd"


class SegmentFormat(enum.Enum):
    TRANSPORT = "transport"
    FRAGMENTED = "fragmented"

    @property
    def extension(self) -> str:
        return "ts" if self is SegmentFormat.TRANSPORT else "mp4"

    @property
    def subdir(self) -> str:
        return "hls" if self is SegmentFormat.TRANSPORT else "dash"


@dataclass(frozen=True)
class StreamLayout:
    base_dir: Path

    @property
    def hls_dir(self) -> Path:
        return self.base_dir / SegmentFormat.TRANSPORT.subdir

    @property
    def dash_dir(self) -> Path:
        return self.base_dir / SegmentFormat.FRAGMENTED.subdir

    @property
    def media_playlist_path(self) -> Path:
        return self.hls_dir / MEDIA_PLAYLIST_NAME

    @property
    def master_playlist_path(self) -> Path:
        return self.hls_dir / MASTER_PLAYLIST_NAME

    @property
    def mpd_path(self) -> Path:
        return self.dash_dir / MPD_NAME

    @property
    def heartbeat_path(self) -> Path:
        return self.base_dir / HEARTBEAT_NAME

    def segment_dir(self, fmt: SegmentFormat) -> Path:
        return self.base_dir / fmt.subdir

    def segment_path(self, slot: Slot, fmt: SegmentFormat) -> Path:
        return self.segment_dir(fmt) / segment_filename(slot, fmt)

    def segment_dirs(self) -> list[Path]:
        return [self.segment_dir(fmt) for fmt in SegmentFormat]

    def ensure_dirs(self) -> None:
        for directory in self.segment_dirs():
            directory.mkdir(parents=True, exist_ok=True)


def segment_filename(slot: Slot, fmt: SegmentFormat) -> str:
    return f"{slot.key}.{fmt.extension}"
