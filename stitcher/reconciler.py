"""Window reconciliation: make every slot in the window playable."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Sequence

from stitcher.gap_repair import GapRepairGenerator
from stitcher.layout import SegmentFormat, StreamLayout
from stitcher.media_tools import MediaTools
from stitcher.segment_health import SegmentHealth, classify, probe
from stitcher.slot_keys import Slot


@dataclass
class ReconcileReport:
    checked: int = 0
    healthy: int = 0
    missing: int = 0
    replaced: int = 0
    synthesized: int = 0
    failed: int = 0

    @property
    def writes(self) -> int:
        return self.replaced + self.synthesized

    def as_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "healthy": self.healthy,
            "missing": self.missing,
            "replaced": self.replaced,
            "synthesized": self.synthesized,
            "failed": self.failed,
        }


class WindowReconciler:
    """Probe each expected segment and fill gaps with synthesized silence.

    Each slot/format pair gets at most one synthesis attempt per call; a
    failed attempt leaves the file absent, so the next cycle retries it.
    Healthy segments, including ones written by an upstream producer, are
    never touched.
    """

    def __init__(
        self,
        layout: StreamLayout,
        tools: MediaTools,
        repair: GapRepairGenerator,
        *,
        min_ok_seconds: float,
        formats: Sequence[SegmentFormat] = tuple(SegmentFormat),
    ) -> None:
        self.layout = layout
        self.tools = tools
        self.repair = repair
        self.min_ok_seconds = float(min_ok_seconds)
        self.formats = tuple(formats)
        self._log = logging.getLogger("stitcher.reconciler")

    def reconcile(self, window: Iterable[Slot]) -> ReconcileReport:
        report = ReconcileReport()
        for slot in window:
            for fmt in self.formats:
                self._reconcile_segment(slot, fmt, report)
        return report

    def _reconcile_segment(self, slot: Slot, fmt: SegmentFormat, report: ReconcileReport) -> None:
        path = self.layout.segment_path(slot, fmt)
        report.checked += 1

        result = probe(path, self.tools)
        health = classify(result, self.min_ok_seconds)

        if health is SegmentHealth.HEALTHY:
            report.healthy += 1
            return

        if health.needs_replacement:
            if health is SegmentHealth.EMPTY:
                self._log.warning(
                    "%s is zero bytes, replacing with silence: %s",
                    fmt.extension.upper(),
                    slot.key,
                )
            else:
                self._log.warning(
                    "%s too short (%.3fs < %.3fs), replacing with silence: %s",
                    fmt.extension.upper(),
                    result.duration_seconds,
                    self.min_ok_seconds,
                    slot.key,
                )
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                self._log.error("Failed to delete bad segment %s: %s", path, exc)
                report.failed += 1
                return
            report.replaced += 1
        else:
            report.missing += 1
            self._log.warning(
                "Missing %s, creating silence: %s", fmt.extension.upper(), slot.key
            )

        if self.repair.synthesize(path, fmt):
            report.synthesized += 1
        else:
            report.failed += 1
