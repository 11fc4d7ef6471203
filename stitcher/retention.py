"""Deletion of segments that have aged out of the retention window."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

from stitcher.slot_keys import SLOT, Slot, floor_minute, instant_for_segment_stem, parse_segment_name

log = logging.getLogger("stitcher.retention")

DEFAULT_BUFFER = timedelta(minutes=5)
DEFAULT_LOOKAHEAD = timedelta(minutes=15)
_DAY = timedelta(days=1)


@dataclass
class PruneReport:
    scanned: int = 0
    deleted: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"scanned": self.scanned, "deleted": self.deleted, "errors": self.errors}


def retention_cutoff(oldest: Slot, buffer: timedelta = DEFAULT_BUFFER) -> datetime:
    return oldest.start - buffer


def _effective_lookahead(now: datetime, cutoff: datetime, lookahead: timedelta) -> timedelta:
    # An HHMM key recurs daily; the lookahead must stay short of the next
    # occurrence of keys older than the cutoff.
    room = _DAY - (floor_minute(now) - cutoff) - SLOT
    return max(timedelta(0), min(lookahead, room))


def _modified_before(entry: os.DirEntry, cutoff: datetime) -> bool:
    try:
        mtime = entry.stat().st_mtime
    except OSError:
        return False
    return datetime.fromtimestamp(mtime, timezone.utc) < cutoff


def prune(
    oldest: Slot,
    now: datetime,
    directories: Iterable[Path],
    *,
    buffer: timedelta = DEFAULT_BUFFER,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> PruneReport:
    """Delete canonical segment files older than ``oldest`` minus ``buffer``.

    Only names that look like segments are considered, so playlists and
    foreign files in the same directory are left alone. A segment exactly
    at the cutoff is kept, and so are HHMM segments up to ``lookahead``
    after ``now``, which an upstream producer may already have written.
    Failures are logged and never raised.
    """
    cutoff = retention_cutoff(oldest, buffer)
    ahead = _effective_lookahead(now, cutoff, lookahead)
    report = PruneReport()

    for directory in directories:
        try:
            entries = list(os.scandir(directory))
        except FileNotFoundError:
            continue
        except OSError as exc:
            log.error("Unable to scan %s: %s", directory, exc)
            report.errors += 1
            continue

        for entry in entries:
            parsed = parse_segment_name(entry.name)
            if parsed is None:
                continue
            stem, _ext = parsed
            report.scanned += 1
            instant = instant_for_segment_stem(stem, now, ahead)
            ahead_of_now = len(stem) == 4 and instant > floor_minute(now)
            if ahead_of_now and _modified_before(entry, cutoff):
                # Left over from the previous day rather than written ahead.
                instant -= _DAY
            if instant >= cutoff:
                continue
            try:
                os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.error("Failed to delete expired segment %s: %s", entry.path, exc)
                report.errors += 1
                continue
            report.deleted += 1
            log.debug("Deleted expired segment %s", entry.path)

    if report.deleted:
        log.info("Pruned %d expired segment(s) older than %s", report.deleted, cutoff.isoformat())
    return report
