import logging

from stitcher.gap_repair import GapRepairGenerator
from stitcher.layout import SegmentFormat


def _generator(tools):
    return GapRepairGenerator(
        tools,
        duration_seconds=60,
        sample_rate=44100,
        channels=1,
        bitrate="96k",
    )


def test_synthesize_creates_directories_and_renames_into_place(tmp_path, fake_tools):
    target = tmp_path / "radio1" / "hls" / "0958.ts"

    assert _generator(fake_tools).synthesize(target, SegmentFormat.TRANSPORT) is True

    assert target.read_bytes() == b"silence 60.0"
    assert list(target.parent.iterdir()) == [target]

    call = fake_tools.render_calls[0]
    assert call["target"].name == ".0958.ts.partial"
    assert call["format"] is SegmentFormat.TRANSPORT
    assert call["duration_seconds"] == 60.0
    assert call["sample_rate"] == 44100
    assert call["channels"] == 1
    assert call["bitrate"] == "96k"


def test_failed_synthesis_leaves_nothing_behind(tmp_path, fake_tools, caplog):
    target = tmp_path / "dash" / "0958.mp4"
    fake_tools.fail_render.add("0958.mp4")

    with caplog.at_level(logging.ERROR, logger="stitcher.gap_repair"):
        ok = _generator(fake_tools).synthesize(target, SegmentFormat.FRAGMENTED)

    assert ok is False
    assert not target.exists()
    assert list(target.parent.iterdir()) == []
    assert "Silence synthesis failed" in caplog.text


def test_existing_target_is_replaced_atomically(tmp_path, fake_tools):
    target = tmp_path / "hls" / "1000.ts"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"media 12.0")

    assert _generator(fake_tools).synthesize(target, SegmentFormat.TRANSPORT) is True
    assert target.read_bytes() == b"silence 60.0"


def test_from_settings_copies_stream_parameters(settings, fake_tools):
    generator = GapRepairGenerator.from_settings(fake_tools, settings)

    assert generator.duration_seconds == float(settings.segment_seconds)
    assert generator.sample_rate == settings.sample_rate
    assert generator.channels == settings.channels
    assert generator.bitrate == settings.bitrate


def test_unexpected_tool_error_returns_false(tmp_path, fake_tools, monkeypatch, caplog):
    target = tmp_path / "hls" / "0958.ts"

    def broken_render(tmp_target, fmt, **kwargs):
        tmp_target.write_bytes(b"half")
        raise UnicodeEncodeError("ascii", "café", 3, 4, "ordinal not in range")

    monkeypatch.setattr(fake_tools, "render_silence", broken_render)

    with caplog.at_level(logging.ERROR, logger="stitcher.gap_repair"):
        ok = _generator(fake_tools).synthesize(target, SegmentFormat.TRANSPORT)

    assert ok is False
    assert list(target.parent.iterdir()) == []
    assert "Unexpected error synthesizing" in caplog.text
