"""Minute-offset time blocks and week arithmetic.

Times of day are integer minutes from midnight. "HH:MM" strings only appear
at the API boundary (parse_hhmm / format_hhmm).
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, NamedTuple

from coordination.db.enums import Weekday

# Atomic slot granularity
SLOT_MINUTES = 30
# Preference entries closer than this are treated as one block
MERGE_GAP_MINUTES = 10
MINUTES_PER_DAY = 24 * 60

MinuteOfDay = int


def parse_hhmm(value: str) -> MinuteOfDay:
    """Parse "HH:MM" (24h, "24:00" allowed as end of day) into minutes."""
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    if not (0 <= minutes < 60) or not (0 <= hours <= 24) or (hours == 24 and minutes):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def format_hhmm(minute: MinuteOfDay) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


class TimeBlock(NamedTuple):
    """Half-open interval [start, end) in minutes from midnight."""

    start: MinuteOfDay
    end: MinuteOfDay

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "TimeBlock") -> bool:
        return not (self.end <= other.start or self.start >= other.end)

    def contains(self, other: "TimeBlock") -> bool:
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeBlock") -> "TimeBlock | None":
        start, end = max(self.start, other.start), min(self.end, other.end)
        return TimeBlock(start, end) if start < end else None

    def atomic_slots(self) -> list["TimeBlock"]:
        """Split into SLOT_MINUTES pieces starting at self.start."""
        return [
            TimeBlock(s, s + SLOT_MINUTES)
            for s in range(self.start, self.end - SLOT_MINUTES + 1, SLOT_MINUTES)
        ]

    def label(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)}"


def subtract_blocks(blocks: Iterable[TimeBlock], removed: Iterable[TimeBlock]) -> list[TimeBlock]:
    """Remove every interval in `removed` from `blocks`."""
    result = sorted(blocks)
    for cut in sorted(removed):
        next_result: list[TimeBlock] = []
        for block in result:
            if not block.overlaps(cut):
                next_result.append(block)
                continue
            if block.start < cut.start:
                next_result.append(TimeBlock(block.start, cut.start))
            if cut.end < block.end:
                next_result.append(TimeBlock(cut.end, block.end))
        result = next_result
    return result


def intersect_blocks(left: Iterable[TimeBlock], right: Iterable[TimeBlock]) -> list[TimeBlock]:
    """Pairwise intersection of two block lists, sorted."""
    right = list(right)
    pieces = []
    for a in left:
        for b in right:
            piece = a.intersect(b)
            if piece is not None:
                pieces.append(piece)
    return sorted(pieces)


# =============================================================================
# Week arithmetic
# =============================================================================

def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def date_in_week(monday: date, weekday: Weekday) -> date:
    return monday + timedelta(days=weekday.number)


def week_dates(monday: date) -> list[date]:
    return [monday + timedelta(days=i) for i in range(7)]
