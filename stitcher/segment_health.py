"""Segment presence and duration checks."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from stitcher.media_tools import MediaToolError, MediaTools

log = logging.getLogger("stitcher.segment_health")


class SegmentHealth(enum.Enum):
    HEALTHY = "healthy"
    MISSING = "missing"
    EMPTY = "empty"
    TRUNCATED = "truncated"

    @property
    def needs_replacement(self) -> bool:
        return self in (SegmentHealth.EMPTY, SegmentHealth.TRUNCATED)


@dataclass(frozen=True)
class ProbeResult:
    path: Path
    exists: bool
    size_bytes: int = 0
    duration_seconds: Optional[float] = None


def probe(path: Path, tools: MediaTools) -> ProbeResult:
    """Stat ``path`` and, when it has content, ask ``tools`` for its duration.

    Never raises: an unreadable file counts as missing and any probing
    failure leaves the duration unknown.
    """
    try:
        stat = os.stat(path)
    except FileNotFoundError:
        return ProbeResult(path=path, exists=False)
    except OSError as exc:
        log.warning("Unable to stat %s: %s", path, exc)
        return ProbeResult(path=path, exists=False)

    size = int(stat.st_size)
    if size == 0:
        return ProbeResult(path=path, exists=True, size_bytes=0)

    try:
        duration: Optional[float] = tools.probe_duration(path)
    except MediaToolError as exc:
        log.debug("Duration probe failed for %s: %s", path, exc)
        duration = None
    except Exception as exc:  # noqa: BLE001 - a broken prober must not stop the cycle
        log.warning("Unexpected probe error for %s: %r", path, exc)
        duration = None
    return ProbeResult(path=path, exists=True, size_bytes=size, duration_seconds=duration)


def classify(result: ProbeResult, min_ok_seconds: float) -> SegmentHealth:
    if not result.exists:
        return SegmentHealth.MISSING
    if result.size_bytes == 0:
        return SegmentHealth.EMPTY
    if result.duration_seconds is not None and result.duration_seconds < min_ok_seconds:
        return SegmentHealth.TRUNCATED
    # Content with an unknown duration counts as healthy.
    return SegmentHealth.HEALTHY
