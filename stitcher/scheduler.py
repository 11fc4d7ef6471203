#!/usr/bin/env python3
"""Periodic reconcile -> prune -> publish loop for one stream.

Run as a service: every ``scheduler.interval_seconds`` the window is
recomputed, gaps are filled with silence, expired segments are pruned, the
HLS/DASH manifests are rewritten and the heartbeat file is touched. Errors
are logged and the loop keeps going; the heartbeat going stale is the only
externally visible symptom.
"""

from __future__ import annotations

import argparse
import enum
import logging
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from stitcher import config as config_module
from stitcher.config import StitcherSettings
from stitcher.gap_repair import GapRepairGenerator
from stitcher.heartbeat import write_heartbeat
from stitcher.layout import StreamLayout
from stitcher.manifests import iso_utc, write_dash_manifest, write_hls_playlists
from stitcher.media_tools import FFmpegMediaTools, MediaTools
from stitcher.reconciler import ReconcileReport, WindowReconciler
from stitcher.retention import PruneReport, prune
from stitcher.slot_keys import current_window
from stitcher.web_status import start_status_server_in_thread

log = logging.getLogger("stitcher.scheduler")


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: datetime
    first_key: str
    last_key: str
    slots: int
    reconcile: ReconcileReport
    prune: PruneReport

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": iso_utc(self.started_at),
            "finished_at": iso_utc(self.finished_at),
            "duration_seconds": round(self.duration_seconds, 3),
            "first_key": self.first_key,
            "last_key": self.last_key,
            "slots": self.slots,
            "reconcile": self.reconcile.as_dict(),
            "prune": self.prune.as_dict(),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_cycle(
    settings: StitcherSettings,
    tools: MediaTools,
    now: Optional[datetime] = None,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> CycleReport:
    """Run one full reconciliation cycle. Unexpected errors propagate."""
    fixed = now is not None
    started = now if fixed else clock()
    layout = StreamLayout(settings.stream_dir)
    layout.ensure_dirs()

    window = current_window(started, settings.window_minutes, settings.safety_margin_minutes)

    reconciler = WindowReconciler(
        layout,
        tools,
        GapRepairGenerator.from_settings(tools, settings),
        min_ok_seconds=settings.min_ok_seconds,
    )
    reconcile_report = reconciler.reconcile(window)

    # Reconciliation can take minutes; prune against the current time so
    # segments written meanwhile resolve to today.
    prune_report = prune(
        window[0],
        started if fixed else clock(),
        layout.segment_dirs(),
        buffer=timedelta(minutes=settings.retention_buffer_minutes),
    )

    write_hls_playlists(layout, window, settings)
    write_dash_manifest(layout, window, settings, started if fixed else clock())

    finished = started if fixed else clock()
    write_heartbeat(layout.heartbeat_path, finished)

    return CycleReport(
        started_at=started,
        finished_at=finished,
        first_key=window[0].key,
        last_key=window[-1].key,
        slots=len(window),
        reconcile=reconcile_report,
        prune=prune_report,
    )


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class SchedulerStats:
    ticks: int = 0
    completed_cycles: int = 0
    failed_cycles: int = 0
    skipped_ticks: int = 0
    last_error: Optional[str] = None
    last_report: Optional[CycleReport] = field(default=None, repr=False)


class TickScheduler:
    """Fixed-period driver that never lets two cycles overlap.

    ``tick()`` claims the running flag with a non-blocking lock acquire; a
    tick that arrives while a cycle is still in progress is skipped and
    counted rather than queued.
    """

    def __init__(
        self,
        cycle: Callable[[], CycleReport],
        interval_seconds: float,
    ) -> None:
        self._cycle = cycle
        self.interval_seconds = max(0.1, float(interval_seconds))
        self._running = threading.Lock()
        self._stats_lock = threading.Lock()
        self.stats = SchedulerStats()
        self.stop_event = threading.Event()

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._running.locked() else SchedulerState.IDLE

    def tick(self) -> bool:
        """Run one cycle unless one is already running. Returns True if it ran."""
        with self._stats_lock:
            self.stats.ticks += 1
        if not self._running.acquire(blocking=False):
            with self._stats_lock:
                self.stats.skipped_ticks += 1
                skipped = self.stats.skipped_ticks
            log.warning("Previous cycle still running; skipping tick (%d skipped so far)", skipped)
            return False
        try:
            report = self._cycle()
        except Exception as exc:  # noqa: BLE001 - the loop must survive any cycle failure
            log.exception("Reconciliation cycle failed: %s", exc)
            with self._stats_lock:
                self.stats.failed_cycles += 1
                self.stats.last_error = f"{type(exc).__name__}: {exc}"
        else:
            with self._stats_lock:
                self.stats.completed_cycles += 1
                self.stats.last_report = report
            rec = report.reconcile
            log.info(
                "Cycle %s..%s done in %.2fs: %d healthy, %d synthesized, %d failed, %d pruned",
                report.first_key,
                report.last_key,
                report.duration_seconds,
                rec.healthy,
                rec.synthesized,
                rec.failed,
                report.prune.deleted,
            )
        finally:
            self._running.release()
        return True

    def status(self) -> dict[str, Any]:
        with self._stats_lock:
            stats = self.stats
            last = stats.last_report.as_dict() if stats.last_report else None
            return {
                "state": self.state.value,
                "interval_seconds": self.interval_seconds,
                "ticks": stats.ticks,
                "completed_cycles": stats.completed_cycles,
                "failed_cycles": stats.failed_cycles,
                "skipped_ticks": stats.skipped_ticks,
                "last_error": stats.last_error,
                "last_cycle": last,
            }

    def stop(self) -> None:
        self.stop_event.set()

    def _handle_signal(self, signum: int, _: object) -> None:
        log.info("Received signal %s; shutting down", signum)
        self.stop()

    def run(self, *, install_signal_handlers: bool = True) -> int:
        if install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    signal.signal(sig, self._handle_signal)
                except ValueError:
                    # Only the main thread may install handlers.
                    pass

        next_deadline = time.monotonic()
        while not self.stop_event.is_set():
            self.tick()
            next_deadline += self.interval_seconds
            delay = next_deadline - time.monotonic()
            if delay < 0:
                # Overran the period; realign instead of firing a burst.
                next_deadline = time.monotonic()
                delay = 0.0
            if self.stop_event.wait(delay):
                break
        log.info("Scheduler exiting")
        return 0


def configure_logging(level: str | None, dev_mode: bool) -> None:
    if level:
        resolved = getattr(logging, level.upper(), logging.INFO)
    else:
        resolved = logging.DEBUG if dev_mode else logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rolling-window HLS/DASH segment stitcher")
    parser.add_argument("--config", help="Path to a config.yaml (overrides STITCHER_CONFIG)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--log-level", default=None, help="Python logging level (default: INFO)")
    parser.add_argument("--no-web", action="store_true", help="Do not start the status server")
    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    if args.config:
        os.environ["STITCHER_CONFIG"] = args.config
    try:
        settings = config_module.load_settings(reload=True)
    except (TypeError, ValueError) as exc:
        print(f"[stitcher] invalid configuration: {exc}", file=sys.stderr, flush=True)
        return 2

    configure_logging(args.log_level, settings.dev_mode)
    log.info(
        "Starting for %s, window=%d minutes, seg=%ss, UTC (output %s)",
        settings.stream_id,
        settings.window_minutes,
        settings.segment_seconds,
        settings.stream_dir,
    )

    tools = FFmpegMediaTools.from_settings(settings)
    scheduler = TickScheduler(lambda: run_cycle(settings, tools), settings.interval_seconds)

    if args.once:
        scheduler.tick()
        return 0 if scheduler.stats.failed_cycles == 0 else 1

    web_handle = None
    if settings.web_enabled and not args.no_web:
        try:
            web_handle = start_status_server_in_thread(settings, scheduler)
        except RuntimeError as exc:
            log.error("Continuing without status server: %s", exc)

    try:
        return scheduler.run()
    finally:
        if web_handle is not None:
            web_handle.stop()


if __name__ == "__main__":  # pragma: no cover - manual execution path
    raise SystemExit(main())
