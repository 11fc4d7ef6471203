#!/usr/bin/env python3
"""
aiohttp status server for the stitcher.

Endpoints:
  GET /healthz             -> "ok" while the heartbeat is fresh, 503 otherwise
  GET /status              -> JSON scheduler counters and last cycle summary
  GET /hls/<file>          -> HLS playlists and .ts segments
  GET /dash/<file>         -> DASH manifest and .mp4 segments
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from aiohttp import web

from stitcher.config import StitcherSettings
from stitcher.heartbeat import heartbeat_age
from stitcher.layout import StreamLayout

MANIFEST_SUFFIXES = {".m3u8", ".mpd"}

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".mpd": "application/dash+xml",
    ".ts": "video/mp2t",
    ".mp4": "audio/mp4",
}

STATUS_PROVIDER_KEY: web.AppKey[Callable[[], dict]] = web.AppKey("status_provider", object)


def _safe_child(directory: Path, name: str) -> Path | None:
    if not name or "/" in name or "\\" in name or name.startswith("."):
        return None
    return directory / name


def build_app(
    settings: StitcherSettings,
    status_provider: Optional[Callable[[], dict[str, Any]]] = None,
    *,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> web.Application:
    log = logging.getLogger("stitcher.web_status")
    layout = StreamLayout(settings.stream_dir)
    max_age = float(settings.max_heartbeat_age)

    app = web.Application()
    app[STATUS_PROVIDER_KEY] = status_provider or (lambda: {})

    async def healthz(_: web.Request) -> web.Response:
        age = heartbeat_age(layout.heartbeat_path, clock())
        if age is None:
            return web.Response(status=503, text="no heartbeat\n")
        if age > max_age:
            return web.Response(status=503, text=f"stale heartbeat ({age:.0f}s)\n")
        return web.Response(text="ok\n")

    async def status(request: web.Request) -> web.Response:
        payload = dict(request.app[STATUS_PROVIDER_KEY]())
        payload["stream_id"] = settings.stream_id
        payload["heartbeat_age_seconds"] = heartbeat_age(layout.heartbeat_path, clock())
        return web.json_response(payload)

    def _file_handler(directory: Path):
        async def handler(request: web.Request) -> web.StreamResponse:
            path = _safe_child(directory, request.match_info["name"])
            if path is None:
                raise web.HTTPNotFound()
            if not path.is_file():
                raise web.HTTPNotFound()
            headers = {}
            content_type = CONTENT_TYPES.get(path.suffix.lower())
            if content_type:
                headers["Content-Type"] = content_type
            if path.suffix.lower() in MANIFEST_SUFFIXES:
                headers["Cache-Control"] = "no-store"
            log.debug("Serving %s", path)
            return web.FileResponse(path, headers=headers)

        return handler

    app.router.add_get("/healthz", healthz)
    app.router.add_get("/status", status)
    app.router.add_get("/hls/{name}", _file_handler(layout.hls_dir))
    app.router.add_get("/dash/{name}", _file_handler(layout.dash_dir))
    return app


class StatusServerHandle:
    """Handle returned by start_status_server_in_thread(). Call stop() to shut down."""

    def __init__(self, thread: threading.Thread, loop: asyncio.AbstractEventLoop, runner: web.AppRunner):
        self.thread = thread
        self.loop = loop
        self.runner = runner

    def stop(self, timeout: float = 5.0) -> None:
        log = logging.getLogger("stitcher.web_status")
        log.info("Stopping status server ...")
        if self.loop.is_running():
            fut = asyncio.run_coroutine_threadsafe(self.runner.cleanup(), self.loop)
            try:
                fut.result(timeout=timeout)
            except Exception as e:  # noqa: BLE001 - shutdown diagnostics only
                log.warning("Error during aiohttp runner cleanup: %r", e)
            self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=timeout)
        log.info("Status server stopped")


def start_status_server_in_thread(settings: StitcherSettings, scheduler) -> StatusServerHandle:
    """Launch the aiohttp server in a dedicated thread with its own event loop."""
    log = logging.getLogger("stitcher.web_status")
    loop = asyncio.new_event_loop()
    runner_box: dict[str, web.AppRunner] = {}
    failure: list[BaseException] = []

    def _run():
        asyncio.set_event_loop(loop)
        runner: web.AppRunner | None = None
        try:
            app = build_app(settings, scheduler.status)
            runner = web.AppRunner(app, access_log=None)
            loop.run_until_complete(runner.setup())
            site = web.TCPSite(runner, settings.web_host, settings.web_port)
            loop.run_until_complete(site.start())
        except Exception as exc:  # noqa: BLE001 - reported to the caller below
            try:
                if runner is not None:
                    loop.run_until_complete(runner.cleanup())
            finally:
                loop.close()
                failure.append(exc)
            return
        runner_box["runner"] = runner
        log.info("Status server started on %s:%s", settings.web_host, settings.web_port)
        try:
            loop.run_forever()
        finally:
            loop.close()

    t = threading.Thread(target=_run, name="stitcher_web", daemon=True)
    t.start()

    while "runner" not in runner_box and not failure and t.is_alive():
        time.sleep(0.05)
    if failure:
        raise RuntimeError(f"status server failed to start: {failure[0]}") from failure[0]
    if "runner" not in runner_box:
        raise RuntimeError("status server thread exited during startup")

    return StatusServerHandle(t, loop, runner_box["runner"])
