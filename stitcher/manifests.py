"""HLS playlists and DASH MPD describing the current window.

Renderers are pure functions of the window slots and stream parameters.
Writers replace the manifest file wholesale through a temporary file, so a
polling player sees either the previous or the new manifest, never a mix.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence
from xml.sax.saxutils import quoteattr

from stitcher.layout import MEDIA_PLAYLIST_NAME, SegmentFormat, StreamLayout, segment_filename
from stitcher.slot_keys import Slot

DEFAULT_BANDWIDTH = 160000
DEFAULT_CODECS = "mp4a.40.2"
DEFAULT_MINIMUM_UPDATE_PERIOD = "PT30S"


def iso_utc(instant: datetime) -> str:
    """Format ``instant`` as ISO-8601 UTC with milliseconds, e.g. ``2024-01-01T09:58:00.000Z``."""
    moment = instant.astimezone(timezone.utc) if instant.tzinfo else instant
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def render_media_playlist(slots: Sequence[Slot], segment_seconds: int) -> str:
    # Segments are addressed by filename, so the media sequence is a fixed
    # placeholder and does not advance as the window slides.
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{segment_seconds}",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ]
    extinf = f"#EXTINF:{float(segment_seconds):.3f},"
    for slot in slots:
        lines.append(f"#EXT-X-PROGRAM-DATE-TIME:{iso_utc(slot.start)}")
        lines.append(extinf)
        lines.append(segment_filename(slot, SegmentFormat.TRANSPORT))
    return "\n".join(lines) + "\n"


def render_master_playlist(
    bandwidth: int = DEFAULT_BANDWIDTH,
    codecs: str = DEFAULT_CODECS,
    media_playlist: str = MEDIA_PLAYLIST_NAME,
) -> str:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f'#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},CODECS="{codecs}"',
        media_playlist,
    ]
    return "\n".join(lines) + "\n"


def render_mpd(
    slots: Sequence[Slot],
    now: datetime,
    *,
    segment_seconds: int,
    horizon_hours: int,
    sample_rate: int,
    channels: int,
    bandwidth: int = DEFAULT_BANDWIDTH,
    codecs: str = DEFAULT_CODECS,
    minimum_update_period: str = DEFAULT_MINIMUM_UPDATE_PERIOD,
) -> str:
    """Render a dynamic MPD listing one SegmentURL per slot."""
    if not slots:
        raise ValueError("cannot render an MPD for an empty window")

    segment_urls = "\n".join(
        f'          <SegmentURL media="{segment_filename(slot, SegmentFormat.FRAGMENTED)}" />'
        for slot in slots
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011"
     type="dynamic"
     availabilityStartTime="{iso_utc(slots[0].start)}"
     publishTime="{iso_utc(now)}"
     minimumUpdatePeriod="{minimum_update_period}"
     timeShiftBufferDepth="PT{horizon_hours}H"
     profiles="urn:mpeg:dash:profile:isoff-live:2011">
  <Period id="p0" start="PT0S">
    <AdaptationSet id="a0" contentType="audio" mimeType="audio/mp4" segmentAlignment="true" lang="und">
      <Representation id="r0" bandwidth="{bandwidth}" codecs={quoteattr(codecs)} audioSamplingRate="{sample_rate}">
        <AudioChannelConfiguration schemeIdUri="urn:mpeg:dash:23003:3:audio_channel_configuration:2011" value="{channels}"/>
        <SegmentList timescale="1" duration="{segment_seconds}">
{segment_urls}
        </SegmentList>
      </Representation>
    </AdaptationSet>
  </Period>
</MPD>
"""


def _write_text(destination: Path, text: str) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_name(f".{destination.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        handle.write(text)
    os.replace(tmp_path, destination)


def write_hls_playlists(layout: StreamLayout, slots: Sequence[Slot], settings) -> None:
    _write_text(
        layout.media_playlist_path,
        render_media_playlist(slots, settings.segment_seconds),
    )
    _write_text(
        layout.master_playlist_path,
        render_master_playlist(settings.bandwidth, settings.codecs),
    )


def write_dash_manifest(
    layout: StreamLayout,
    slots: Sequence[Slot],
    settings,
    now: datetime,
) -> None:
    _write_text(
        layout.mpd_path,
        render_mpd(
            slots,
            now,
            segment_seconds=settings.segment_seconds,
            horizon_hours=settings.history_hours,
            sample_rate=settings.sample_rate,
            channels=settings.channels,
            bandwidth=settings.bandwidth,
            codecs=settings.codecs,
            minimum_update_period=settings.minimum_update_period,
        ),
    )
