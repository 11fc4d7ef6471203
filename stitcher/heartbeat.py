"""Liveness marker written at the end of every reconciliation cycle."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

from stitcher.manifests import iso_utc


def write_heartbeat(path: Path, now: datetime | None = None) -> None:
    moment = now or datetime.now(timezone.utc)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        handle.write(iso_utc(moment) + "\n")
    os.replace(tmp_path, path)


def read_heartbeat(path: Path) -> datetime | None:
    """Return the last heartbeat instant, or None when absent or unreadable."""

    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except (FileNotFoundError, OSError):
        return None
    if not text:
        return None
    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def heartbeat_age(path: Path, now: datetime | None = None) -> float | None:
    beat = read_heartbeat(path)
    if beat is None:
        return None
    current = now or datetime.now(timezone.utc)
    return max(0.0, (current - beat).total_seconds())


__all__ = ["heartbeat_age", "read_heartbeat", "write_heartbeat"]
