"""Shared helpers for building ffmpeg/ffprobe command lines."""

from __future__ import annotations

from stitcher.layout import SegmentFormat

DEFAULT_LOGLEVEL = "error"


def channel_layout(channels: int) -> str:
    return "stereo" if channels == 2 else "mono"


def silence_input_args(sample_rate: int, channels: int) -> list[str]:
    """Return input arguments for a generated digital-silence source.

    ``anullsrc`` is a lavfi source, so ``-f lavfi`` has to appear before the
    ``-i`` it applies to.
    """

    return [
        "-f",
        "lavfi",
        "-i",
        f"anullsrc=r={sample_rate}:cl={channel_layout(channels)}",
    ]


def aac_output_args(bitrate: str, sample_rate: int, channels: int) -> list[str]:
    return [
        "-c:a",
        "aac",
        "-b:a",
        bitrate,
        "-ar",
        str(sample_rate),
        "-ac",
        str(channels),
    ]


def container_args(fmt: SegmentFormat) -> list[str]:
    if fmt is SegmentFormat.TRANSPORT:
        return ["-f", "mpegts"]
    # Moov atom up front so players can start before the whole file loads.
    return ["-f", "mp4", "-movflags", "+faststart"]


def silence_command(
    ffmpeg: str,
    target: str,
    fmt: SegmentFormat,
    *,
    duration_seconds: float,
    sample_rate: int,
    channels: int,
    bitrate: str,
    loglevel: str = DEFAULT_LOGLEVEL,
) -> list[str]:
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        loglevel,
        "-y",
        *silence_input_args(sample_rate, channels),
        "-t",
        f"{duration_seconds:g}",
        *aac_output_args(bitrate, sample_rate, channels),
        *container_args(fmt),
        target,
    ]


def duration_probe_command(ffprobe: str, target: str) -> list[str]:
    return [
        ffprobe,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        target,
    ]
