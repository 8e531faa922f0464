"""Alternative-Slot Finder.

Greedy nearest-day-first scan of a user's preferred blocks for the first
window nobody occupies. Read-only.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable, NamedTuple
from uuid import UUID

from sqlalchemy.orm import Session

from coordination.db.enums import Weekday
from coordination.db.models import Room, TimeSlot
from coordination.services import slot_store
from coordination.services.preference_service import preferred_blocks, preferred_weekdays
from coordination.services.room_service import resolve_today
from coordination.services.slot_store import SlotRef
from coordination.utils.timeblocks import SLOT_MINUTES, TimeBlock, date_in_week, week_start

logger = logging.getLogger(__name__)


class AlternativeSlot(NamedTuple):
    day: Weekday
    slot_date: date
    start: int
    end: int

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start, self.end)

    def ref(self, user_id: UUID) -> SlotRef:
        return SlotRef(user_id, self.slot_date, self.start, self.end)


def search_dates(weekdays: list[Weekday], exclude_date: date | None, today: date) -> list[date]:
    """
    Dates to scan, in order.

    The weekday of `exclude_date` comes first (searched on that date), then
    the remaining weekdays by proximity: days not yet passed this week,
    then passed ones on their next-week dates.
    """
    monday = week_start(today)
    first: list[date] = []
    rest: list[date] = []
    exclude_day = Weekday.of(exclude_date) if exclude_date else None
    for weekday in weekdays:
        if weekday == exclude_day:
            first.append(exclude_date)
            continue
        candidate = date_in_week(monday, weekday)
        if weekday.number < today.weekday():
            candidate += timedelta(days=7)
        rest.append(candidate)
    return first + sorted(rest)


def _is_occupied(window: TimeBlock, day_slots: list[TimeSlot], free: set[SlotRef]) -> bool:
    for slot in day_slots:
        if not window.overlaps(slot.block):
            continue
        if SlotRef.from_slot(slot) in free:
            continue
        return True
    return False


def find_alternative_slot(
    db: Session,
    room: Room,
    user_id: UUID,
    required_minutes: int,
    exclude_date: date | None,
    slots_to_treat_as_free: Iterable[SlotRef] = (),
    today: date | None = None,
) -> AlternativeSlot | None:
    """
    First conflict-free window of `required_minutes` in the user's preferences.

    Slots listed in `slots_to_treat_as_free` (same user/date/time) are
    about to be vacated and do not count as occupied.
    """
    if required_minutes <= 0 or required_minutes % SLOT_MINUTES:
        raise ValueError(f"required_minutes must be a positive multiple of {SLOT_MINUTES}")

    member = room.member_for(user_id)
    if member is None:
        return None

    today = resolve_today(today)
    dates = search_dates(preferred_weekdays(member), exclude_date, today)
    if not dates:
        return None

    free = {piece for ref in slots_to_treat_as_free for piece in ref.atomic()}
    by_date: dict[date, list[TimeSlot]] = {}
    for slot in slot_store.slots_for_dates(db, room.id, dates):
        by_date.setdefault(slot.slot_date, []).append(slot)

    for day in dates:
        day_slots = by_date.get(day, [])
        for block in preferred_blocks(room, member, day):
            start = block.start
            while start + required_minutes <= block.end:
                window = TimeBlock(start, start + required_minutes)
                if not _is_occupied(window, day_slots, free):
                    found = AlternativeSlot(Weekday.of(day), day, window.start, window.end)
                    logger.debug(
                        "Alternative for user %s: %s %s", user_id, day.isoformat(), window.label()
                    )
                    return found
                start += SLOT_MINUTES

    return None
