"""Mapping between wall-clock instants and per-minute slot keys.

Slot keys are the ``HHMM`` (UTC) names the segments carry on disk and in the
manifests. Because a key has no date component, turning a key back into an
instant is ambiguous around midnight; ``Slot`` therefore keeps its full start
instant and code that only has a filename uses ``resolve_key``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

SLOT = timedelta(minutes=1)

_KEY_RE = re.compile(r"^(\d{2})(\d{2})$")
_SEGMENT_NAME_RE = re.compile(r"^(\d{4}|\d{12})\.(ts|mp4)$")


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def floor_minute(instant: datetime) -> datetime:
    return _as_utc(instant).replace(second=0, microsecond=0)


@dataclass(frozen=True, order=True)
class Slot:
    """One minute of the stream, identified by its UTC start instant."""

    start: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", floor_minute(self.start))

    @property
    def key(self) -> str:
        return key_for(self.start)

    @property
    def end(self) -> datetime:
        return self.start + SLOT

    def __str__(self) -> str:
        return self.key


def key_for(instant: datetime) -> str:
    """Return the ``HHMM`` key of the minute containing ``instant``."""
    moment = floor_minute(instant)
    return f"{moment.hour:02d}{moment.minute:02d}"


def _split_key(key: str) -> tuple[int, int]:
    match = _KEY_RE.match(key)
    if not match:
        raise ValueError(f"invalid slot key: {key!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"invalid slot key: {key!r}")
    return hour, minute


def instant_for(key: str, reference_now: datetime) -> datetime:
    """Place ``key`` on the calendar day of ``reference_now``.

    This is a lossy inverse of :func:`key_for`: it assumes the slot belongs
    to the current UTC day, which is wrong for slots of the previous day
    once midnight has passed (``"2359"`` at 00:10 lands almost a day in the
    future). Prefer :attr:`Slot.start` or :func:`resolve_key`.
    """
    hour, minute = _split_key(key)
    ref = _as_utc(reference_now)
    return ref.replace(hour=hour, minute=minute, second=0, microsecond=0)


def resolve_key(
    key: str,
    reference_now: datetime,
    lookahead: timedelta = timedelta(0),
) -> datetime:
    """Return the latest occurrence of ``key`` at or before ``reference_now``.

    Keys up to ``lookahead`` after the reference minute still resolve to the
    reference day, so a segment a producer has already written for the next
    few minutes is not mistaken for one from yesterday.
    """
    candidate = instant_for(key, reference_now)
    if candidate > floor_minute(reference_now) + lookahead:
        candidate -= timedelta(days=1)
    return candidate


def current_window(
    now: datetime,
    horizon_minutes: int,
    safety_margin_minutes: int = 1,
) -> list[Slot]:
    """Return the ``horizon_minutes`` slots ending ``safety_margin_minutes``
    before the minute containing ``now``, oldest first."""
    if horizon_minutes < 1:
        raise ValueError("horizon_minutes must be at least 1")
    if safety_margin_minutes < 0:
        raise ValueError("safety_margin_minutes must be non-negative")
    end = floor_minute(now) - safety_margin_minutes * SLOT
    return [Slot(end - offset * SLOT) for offset in range(horizon_minutes - 1, -1, -1)]


def current_window_keys(
    now: datetime,
    horizon_minutes: int,
    safety_margin_minutes: int = 1,
) -> list[str]:
    return [slot.key for slot in current_window(now, horizon_minutes, safety_margin_minutes)]


def parse_segment_name(name: str) -> tuple[str, str] | None:
    """Split a canonical segment filename into ``(stem, extension)``.

    Accepts ``HHMM.ts``/``HHMM.mp4`` and the date-qualified
    ``YYYYMMDDHHMM.<ext>`` form. Returns None for anything else.
    """
    match = _SEGMENT_NAME_RE.match(name)
    if not match:
        return None
    stem, ext = match.group(1), match.group(2)
    try:
        if len(stem) == 4:
            _split_key(stem)
        else:
            datetime.strptime(stem, "%Y%m%d%H%M")
    except ValueError:
        return None
    return stem, ext


def instant_for_segment_stem(
    stem: str,
    reference_now: datetime,
    lookahead: timedelta = timedelta(0),
) -> datetime:
    """Resolve a stem returned by :func:`parse_segment_name` to a UTC instant."""
    if len(stem) == 12:
        return datetime.strptime(stem, "%Y%m%d%H%M").replace(tzinfo=timezone.utc)
    return resolve_key(stem, reference_now, lookahead)
