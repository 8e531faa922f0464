"""Preference Resolver.

Turns a member's preference entries into merged availability blocks for
one date, limited to what the room owner allows on that date.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

from coordination.db.enums import Weekday
from coordination.db.models import MemberPreference, Room, RoomMember
from coordination.utils.timeblocks import (
    MERGE_GAP_MINUTES,
    MINUTES_PER_DAY,
    TimeBlock,
    intersect_blocks,
    subtract_blocks,
)

# Entries at or above this priority are "preferred"
PREFERRED_PRIORITY = 2


def merge_blocks(blocks: Iterable[TimeBlock], gap: int = MERGE_GAP_MINUTES) -> list[TimeBlock]:
    """
    Merge blocks whose gap is at most `gap` minutes.

    Overlapping and touching blocks always merge.
    """
    merged: list[TimeBlock] = []
    for block in sorted(blocks):
        if merged and block.start - merged[-1].end <= gap:
            last = merged[-1]
            merged[-1] = TimeBlock(last.start, max(last.end, block.end))
        else:
            merged.append(block)
    return merged


def _applies_to(entry_day: str | None, entry_date: date | None, day: date) -> bool:
    if entry_date is not None:
        return entry_date == day
    return entry_day == Weekday.of(day).value


def entries_for_day(
    member: RoomMember,
    day: date,
    min_priority: int = PREFERRED_PRIORITY,
) -> list[MemberPreference]:
    return [
        p
        for p in member.preferences
        if p.priority >= min_priority and _applies_to(p.day_of_week, p.specific_date, day)
    ]


def owner_allowed_blocks(room: Room, day: date) -> list[TimeBlock]:
    """
    Owner's allowed schedule for a date minus the room's blocked times.

    Windows pinned to the date replace the weekday windows. A room
    without any schedule windows allows the whole day.
    """
    if not room.schedule_windows:
        allowed = [TimeBlock(0, MINUTES_PER_DAY)]
    else:
        pinned = [w.block for w in room.schedule_windows if w.specific_date == day]
        if pinned:
            allowed = merge_blocks(pinned, gap=0)
        else:
            allowed = merge_blocks(
                [
                    w.block
                    for w in room.schedule_windows
                    if w.specific_date is None and w.day_of_week == Weekday.of(day).value
                ],
                gap=0,
            )
    return subtract_blocks(allowed, [b.block for b in room.blocked_times])


def preferred_blocks(room: Room, member: RoomMember, day: date) -> list[TimeBlock]:
    """Merged preferred blocks for `day`, intersected with the owner's schedule."""
    merged = merge_blocks(entry.block for entry in entries_for_day(member, day))
    if not merged:
        return []
    return intersect_blocks(merged, owner_allowed_blocks(room, day))


def preferred_weekdays(member: RoomMember) -> list[Weekday]:
    """Weekdays the member declared anything for, any priority, Monday first."""
    days = set()
    for entry in member.preferences:
        if entry.specific_date is not None:
            days.add(Weekday.of(entry.specific_date))
        elif entry.day_of_week:
            days.add(Weekday(entry.day_of_week))
    return sorted(days, key=lambda d: d.number)


def is_within_preferences(room: Room, member: RoomMember, day: date, block: TimeBlock) -> bool:
    return any(b.contains(block) for b in preferred_blocks(room, member, day))
