"""
Tests for the Slot Store.

Coverage:
- SlotPlan atomization
- apply_plan validation (missing removals, double booking) before any write
- Run and ownership queries
"""

from datetime import date

import pytest

from coordination.db.models import TimeSlot
from coordination.services import slot_store
from coordination.services.errors import InvalidStateError, ResolutionFailureError
from coordination.services.slot_store import SlotPlan, SlotRef
from coordination.utils.timeblocks import parse_hhmm

MONDAY = date(2026, 10, 19)


def ref(user, start: str, end: str, on: date = MONDAY) -> SlotRef:
    return SlotRef(user.id, on, parse_hhmm(start), parse_hhmm(end))


@pytest.fixture
def people(make_user, make_room):
    owner = make_user("owner")
    alice = make_user("alice")
    bob = make_user("bob")
    room = make_room(owner, [alice, bob])
    return room, alice, bob


class TestSlotPlan:
    def test_insert_and_remove_split_into_atomic_slots(self, people):
        room, alice, bob = people
        plan = SlotPlan()
        plan.insert(ref(alice, "09:00", "10:30"))
        plan.remove(ref(bob, "14:00", "15:00"))

        assert [p.ref.start for p in plan.insertions] == [540, 570, 600]
        assert all(p.ref.minutes == 30 for p in plan.insertions)
        assert len(plan.removals) == 2

    def test_json_snapshot(self, people):
        room, alice, bob = people
        snapshot = ref(alice, "09:00", "10:00").to_json()
        assert snapshot["day"] == "monday"
        assert snapshot["start_time"] == "09:00"
        assert SlotRef.from_json(snapshot) == ref(alice, "09:00", "10:00")


class TestApplyPlan:
    def test_moves_ownership(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "10:00")

        plan = SlotPlan()
        plan.remove(ref(alice, "09:00", "10:00"))
        plan.insert(ref(bob, "09:00", "10:00"))
        slot_store.apply_plan(db, room.id, plan)
        db.commit()

        slots = slot_store.slots_in_week(db, room.id, MONDAY)
        assert len(slots) == 2
        assert {s.user_id for s in slots} == {bob.id}

    def test_missing_removal_fails_without_writing(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, bob, MONDAY, "09:00", "09:30")

        plan = SlotPlan()
        plan.remove(ref(bob, "09:00", "09:30"))
        plan.remove(ref(alice, "11:00", "11:30"))
        with pytest.raises(ResolutionFailureError):
            slot_store.apply_plan(db, room.id, plan)
        db.rollback()

        assert len(slot_store.slots_in_week(db, room.id, MONDAY)) == 1

    def test_double_booking_is_rejected(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "10:00")

        plan = SlotPlan()
        plan.insert(ref(alice, "09:30", "10:30"))
        with pytest.raises(InvalidStateError):
            slot_store.apply_plan(db, room.id, plan)
        db.rollback()

        assert len(slot_store.slots_in_week(db, room.id, MONDAY)) == 2

    def test_double_booking_within_one_plan(self, db, people):
        room, alice, bob = people
        plan = SlotPlan()
        plan.insert(ref(alice, "09:00", "09:30"))
        plan.insert(ref(alice, "09:00", "09:30"))
        with pytest.raises(InvalidStateError):
            slot_store.apply_plan(db, room.id, plan)

    def test_reinserting_a_removed_key(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "09:30", subject="old")

        plan = SlotPlan()
        plan.remove(ref(alice, "09:00", "09:30"))
        plan.insert(ref(alice, "09:00", "09:30"), subject="new")
        slot_store.apply_plan(db, room.id, plan)
        db.commit()

        slots = slot_store.slots_in_week(db, room.id, MONDAY)
        assert [s.subject for s in slots] == ["new"]


class TestQueries:
    def test_user_run_stops_at_gap(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "10:00")
        add_slots(room, alice, MONDAY, "10:30", "11:00")

        run = slot_store.user_run_from(db, room.id, alice.id, MONDAY, parse_hhmm("09:00"))
        assert [s.start_minute for s in run] == [540, 570]

        capped = slot_store.user_run_from(
            db, room.id, alice.id, MONDAY, parse_hhmm("09:00"), max_slots=1
        )
        assert len(capped) == 1

        assert slot_store.user_run_from(db, room.id, bob.id, MONDAY, parse_hhmm("09:00")) == []

    def test_holds_all(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "10:00")

        assert slot_store.holds_all(db, room.id, [ref(alice, "09:00", "10:00")])
        assert not slot_store.holds_all(db, room.id, [ref(alice, "09:00", "10:30")])
        assert not slot_store.holds_all(db, room.id, [ref(bob, "09:00", "09:30")])

    def test_user_minutes_by_week(self, db, people, add_slots):
        room, alice, bob = people
        add_slots(room, alice, MONDAY, "09:00", "10:00")
        add_slots(room, bob, date(2026, 10, 25), "09:00", "09:30")
        add_slots(room, bob, date(2026, 10, 26), "09:00", "09:30")

        minutes = slot_store.user_minutes_by_week(db, room.id, MONDAY)
        assert minutes == {alice.id: 60, bob.id: 30}
        assert db.query(TimeSlot).count() == 4
