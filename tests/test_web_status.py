from datetime import datetime, timedelta, timezone

import pytest

from stitcher import web_status
from stitcher.heartbeat import write_heartbeat
from stitcher.layout import StreamLayout
from stitcher.web_status import build_app

pytest_plugins = ("aiohttp.pytest_plugin",)

NOW = datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc)


@pytest.fixture
def layout(settings):
    layout = StreamLayout(settings.stream_dir)
    layout.ensure_dirs()
    return layout


async def test_healthz_without_heartbeat(aiohttp_client, settings, layout):
    client = await aiohttp_client(build_app(settings, clock=lambda: NOW))

    resp = await client.get("/healthz")

    assert resp.status == 503
    assert await resp.text() == "no heartbeat\n"


async def test_healthz_fresh_and_stale(aiohttp_client, settings, layout):
    write_heartbeat(layout.heartbeat_path, NOW)
    current = {"now": NOW + timedelta(seconds=5)}
    client = await aiohttp_client(build_app(settings, clock=lambda: current["now"]))

    resp = await client.get("/healthz")
    assert resp.status == 200
    assert await resp.text() == "ok\n"

    current["now"] = NOW + timedelta(seconds=120)
    resp = await client.get("/healthz")
    assert resp.status == 503
    assert "stale heartbeat (120s)" in await resp.text()


async def test_status_merges_provider_payload(aiohttp_client, settings, layout):
    write_heartbeat(layout.heartbeat_path, NOW)
    app = build_app(
        settings,
        lambda: {"state": "idle", "completed_cycles": 4},
        clock=lambda: NOW + timedelta(seconds=3),
    )
    client = await aiohttp_client(app)

    resp = await client.get("/status")

    assert resp.status == 200
    payload = await resp.json()
    assert payload["state"] == "idle"
    assert payload["completed_cycles"] == 4
    assert payload["stream_id"] == "radio1"
    assert payload["heartbeat_age_seconds"] == pytest.approx(3.0)


async def test_manifests_are_served_uncached(aiohttp_client, settings, layout):
    layout.media_playlist_path.write_text("#EXTM3U\n", encoding="utf-8")
    layout.mpd_path.write_text("<MPD/>\n", encoding="utf-8")
    client = await aiohttp_client(build_app(settings, clock=lambda: NOW))

    resp = await client.get("/hls/playlist.m3u8")
    assert resp.status == 200
    assert resp.headers["Cache-Control"] == "no-store"
    assert resp.headers["Content-Type"].startswith("application/vnd.apple.mpegurl")
    assert await resp.text() == "#EXTM3U\n"

    resp = await client.get("/dash/manifest.mpd")
    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("application/dash+xml")


async def test_segments_are_served_and_hidden_files_are_not(aiohttp_client, settings, layout):
    (layout.hls_dir / "0958.ts").write_bytes(b"\x47" * 188)
    (layout.hls_dir / ".0959.ts.partial").write_bytes(b"half")
    client = await aiohttp_client(build_app(settings, clock=lambda: NOW))

    resp = await client.get("/hls/0958.ts")
    assert resp.status == 200
    assert "Cache-Control" not in resp.headers
    assert await resp.read() == b"\x47" * 188

    assert (await client.get("/hls/.0959.ts.partial")).status == 404
    assert (await client.get("/hls/1000.ts")).status == 404
    assert (await client.get("/dash/0958.mp4")).status == 404


def test_failed_startup_closes_event_loop(settings, monkeypatch):
    loops = []
    real_new_event_loop = web_status.asyncio.new_event_loop

    def recording_new_event_loop():
        loop = real_new_event_loop()
        loops.append(loop)
        return loop

    class _BusySite:
        def __init__(self, runner, host, port):
            pass

        async def start(self):
            raise OSError("address already in use")

    monkeypatch.setattr(web_status.asyncio, "new_event_loop", recording_new_event_loop)
    monkeypatch.setattr(web_status.web, "TCPSite", _BusySite)

    class _Scheduler:
        @staticmethod
        def status():
            return {}

    with pytest.raises(RuntimeError, match="address already in use"):
        web_status.start_status_server_in_thread(settings, _Scheduler())

    assert len(loops) == 1
    assert loops[0].is_closed()
