"""
Tests for the Preference Resolver.

Coverage:
- Merging fragmented entries (gap tolerance)
- Owner schedule intersection, pinned dates, blocked times
- Priority filtering
"""

from datetime import date

from coordination.db.enums import Weekday
from coordination.db.models import RoomBlockedTime, RoomScheduleWindow
from coordination.services.preference_service import (
    merge_blocks,
    owner_allowed_blocks,
    preferred_blocks,
    preferred_weekdays,
)
from coordination.utils.timeblocks import TimeBlock, parse_hhmm

MONDAY = date(2026, 10, 19)


def block(start: str, end: str) -> TimeBlock:
    return TimeBlock(parse_hhmm(start), parse_hhmm(end))


# =============================================================================
# merge_blocks
# =============================================================================

class TestMergeBlocks:
    def test_merges_gap_within_tolerance(self):
        merged = merge_blocks([block("09:00", "10:00"), block("10:10", "11:00")])
        assert merged == [block("09:00", "11:00")]

    def test_keeps_blocks_apart_beyond_tolerance(self):
        merged = merge_blocks([block("09:00", "10:00"), block("10:11", "11:00")])
        assert merged == [block("09:00", "10:00"), block("10:11", "11:00")]

    def test_unsorted_and_overlapping_input(self):
        merged = merge_blocks(
            [block("13:00", "14:00"), block("09:00", "10:30"), block("10:00", "11:00")]
        )
        assert merged == [block("09:00", "11:00"), block("13:00", "14:00")]


# =============================================================================
# Owner schedule
# =============================================================================

class TestOwnerSchedule:
    def test_room_without_windows_allows_whole_day(self, make_user, make_room):
        owner = make_user("owner")
        room = make_room(owner)
        assert owner_allowed_blocks(room, MONDAY) == [block("00:00", "24:00")]

    def test_pinned_window_replaces_weekday_window(self, db, make_user, make_room):
        owner = make_user("owner")
        room = make_room(owner)
        room.schedule_windows.append(
            RoomScheduleWindow(day_of_week="monday", start_minute=480, end_minute=1080)
        )
        room.schedule_windows.append(
            RoomScheduleWindow(specific_date=MONDAY, start_minute=600, end_minute=720)
        )
        db.commit()

        assert owner_allowed_blocks(room, MONDAY) == [block("10:00", "12:00")]
        # Next Monday only has the recurring window
        next_monday = date(2026, 10, 26)
        assert owner_allowed_blocks(room, next_monday) == [block("08:00", "18:00")]

    def test_blocked_times_are_removed(self, db, make_user, make_room):
        owner = make_user("owner")
        room = make_room(owner)
        room.blocked_times.append(RoomBlockedTime(name="lunch", start_minute=720, end_minute=780))
        db.commit()

        assert owner_allowed_blocks(room, MONDAY) == [block("00:00", "12:00"), block("13:00", "24:00")]


# =============================================================================
# preferred_blocks
# =============================================================================

class TestPreferredBlocks:
    def test_intersects_with_owner_schedule(self, db, make_user, make_room, add_preference):
        owner = make_user("owner")
        member = make_user("alice")
        room = make_room(owner, [member])
        room.schedule_windows.append(
            RoomScheduleWindow(day_of_week="monday", start_minute=540, end_minute=720)
        )
        db.commit()
        add_preference(room, member, Weekday.MONDAY, "08:00", "10:00")
        add_preference(room, member, Weekday.MONDAY, "10:05", "13:00")

        blocks = preferred_blocks(room, member_of(room, member), MONDAY)

        assert blocks == [block("09:00", "12:00")]

    def test_low_priority_entries_are_not_preferred(self, make_user, make_room, add_preference):
        owner = make_user("owner")
        member = make_user("alice")
        room = make_room(owner, [member])
        add_preference(room, member, Weekday.MONDAY, "09:00", "10:00", priority=1)
        add_preference(room, member, Weekday.TUESDAY, "09:00", "10:00", priority=3)

        rm = member_of(room, member)
        assert preferred_blocks(room, rm, MONDAY) == []
        assert preferred_weekdays(rm) == [Weekday.MONDAY, Weekday.TUESDAY]

    def test_specific_date_entry_applies_to_that_date_only(
        self, make_user, make_room, add_preference
    ):
        owner = make_user("owner")
        member = make_user("alice")
        room = make_room(owner, [member])
        add_preference(room, member, MONDAY, "14:00", "15:00")

        rm = member_of(room, member)
        assert preferred_blocks(room, rm, MONDAY) == [block("14:00", "15:00")]
        assert preferred_blocks(room, rm, date(2026, 10, 26)) == []


def member_of(room, user):
    return room.member_for(user.id)
