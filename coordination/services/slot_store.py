"""Slot Store: atomic slot queries and batched mutation plans.

Every operation that changes slots builds a SlotPlan (removals and
insertions), and apply_plan validates the whole plan against the current
rows before touching the session. Nothing is updated in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordination.db.enums import SlotStatus, Weekday
from coordination.db.models import TimeSlot
from coordination.services.errors import InvalidStateError, ResolutionFailureError
from coordination.utils.timeblocks import (
    SLOT_MINUTES,
    TimeBlock,
    format_hhmm,
    parse_hhmm,
    week_dates,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotRef:
    """A user's block on one date; atomic when it spans SLOT_MINUTES."""

    user_id: UUID
    slot_date: date
    start: int
    end: int

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start, self.end)

    @property
    def day(self) -> Weekday:
        return Weekday.of(self.slot_date)

    @property
    def minutes(self) -> int:
        return self.end - self.start

    def atomic(self) -> list["SlotRef"]:
        return [replace(self, start=b.start, end=b.end) for b in self.block.atomic_slots()]

    def moved_to(self, user_id: UUID) -> "SlotRef":
        return replace(self, user_id=user_id)

    def to_json(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "date": self.slot_date.isoformat(),
            "day": self.day.value,
            "start_time": format_hhmm(self.start),
            "end_time": format_hhmm(self.end),
        }

    @classmethod
    def from_json(cls, data: dict) -> "SlotRef":
        return cls(
            user_id=UUID(data["user_id"]),
            slot_date=date.fromisoformat(data["date"]),
            start=parse_hhmm(data["start_time"]),
            end=parse_hhmm(data["end_time"]),
        )

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "SlotRef":
        return cls(slot.user_id, slot.slot_date, slot.start_minute, slot.end_minute)


@dataclass(frozen=True)
class SlotPlacement:
    ref: SlotRef
    subject: str | None = None
    status: SlotStatus = SlotStatus.CONFIRMED
    negotiation_id: UUID | None = None


@dataclass
class SlotPlan:
    """Ordered removals and insertions committed together."""

    removals: list[SlotRef] = field(default_factory=list)
    insertions: list[SlotPlacement] = field(default_factory=list)

    def remove(self, ref: SlotRef) -> None:
        self.removals.extend(ref.atomic())

    def insert(
        self,
        ref: SlotRef,
        subject: str | None = None,
        status: SlotStatus = SlotStatus.CONFIRMED,
        negotiation_id: UUID | None = None,
    ) -> None:
        for piece in ref.atomic():
            self.insertions.append(SlotPlacement(piece, subject, status, negotiation_id))

    @property
    def is_empty(self) -> bool:
        return not self.removals and not self.insertions

    def dates(self) -> set[date]:
        return {r.slot_date for r in self.removals} | {p.ref.slot_date for p in self.insertions}


# =============================================================================
# Queries
# =============================================================================

def slots_for_dates(db: Session, room_id: UUID, dates: Iterable[date]) -> list[TimeSlot]:
    dates = list(set(dates))
    if not dates:
        return []
    return list(
        db.execute(
            select(TimeSlot)
            .where(TimeSlot.room_id == room_id, TimeSlot.slot_date.in_(dates))
            .order_by(TimeSlot.slot_date, TimeSlot.start_minute)
        ).scalars()
    )


def slots_in_week(db: Session, room_id: UUID, monday: date) -> list[TimeSlot]:
    return slots_for_dates(db, room_id, week_dates(monday))


def user_minutes_by_week(db: Session, room_id: UUID, monday: date) -> dict[UUID, int]:
    """Assigned minutes per user for the week starting at `monday`."""
    totals: dict[UUID, int] = {}
    for slot in slots_in_week(db, room_id, monday):
        totals[slot.user_id] = totals.get(slot.user_id, 0) + (slot.end_minute - slot.start_minute)
    return totals


def get_slots_by_ids(db: Session, room_id: UUID, slot_ids: list[UUID]) -> list[TimeSlot]:
    if not slot_ids:
        return []
    return list(
        db.execute(
            select(TimeSlot)
            .where(TimeSlot.room_id == room_id, TimeSlot.id.in_(slot_ids))
            .order_by(TimeSlot.slot_date, TimeSlot.start_minute)
        ).scalars()
    )


def user_run_from(
    db: Session,
    room_id: UUID,
    user_id: UUID,
    slot_date: date,
    start: int,
    max_slots: int | None = None,
) -> list[TimeSlot]:
    """
    Consecutive slots a user holds on a date beginning exactly at `start`.

    Returns an empty list when the user holds nothing at `start`.
    """
    rows = db.execute(
        select(TimeSlot)
        .where(
            TimeSlot.room_id == room_id,
            TimeSlot.user_id == user_id,
            TimeSlot.slot_date == slot_date,
            TimeSlot.start_minute >= start,
        )
        .order_by(TimeSlot.start_minute)
    ).scalars()

    run: list[TimeSlot] = []
    expected = start
    for slot in rows:
        if slot.start_minute != expected:
            break
        run.append(slot)
        expected = slot.end_minute
        if max_slots is not None and len(run) >= max_slots:
            break
    return run


def holds_all(db: Session, room_id: UUID, refs: Iterable[SlotRef]) -> bool:
    """True when every atomic piece of `refs` is still held by its user."""
    pieces = [piece for ref in refs for piece in ref.atomic()]
    if not pieces:
        return True
    held = {
        SlotRef.from_slot(slot)
        for slot in slots_for_dates(db, room_id, {p.slot_date for p in pieces})
    }
    return all(piece in held for piece in pieces)


# =============================================================================
# Mutation
# =============================================================================

def _check_no_double_booking(remaining: list[SlotRef], placements: list[SlotPlacement]) -> None:
    taken: dict[tuple[UUID, date], list[TimeBlock]] = {}
    for ref in remaining:
        taken.setdefault((ref.user_id, ref.slot_date), []).append(ref.block)

    for placement in placements:
        ref = placement.ref
        key = (ref.user_id, ref.slot_date)
        blocks = taken.setdefault(key, [])
        if any(ref.block.overlaps(b) for b in blocks):
            raise InvalidStateError(
                f"User {ref.user_id} already holds a slot overlapping "
                f"{ref.slot_date.isoformat()} {ref.block.label()}"
            )
        blocks.append(ref.block)


def apply_plan(db: Session, room_id: UUID, plan: SlotPlan) -> list[TimeSlot]:
    """
    Apply a validated plan and flush; the caller commits.

    Raises:
        ResolutionFailureError: a slot to remove is no longer held
        InvalidStateError: an insertion would double-book a user
    """
    if plan.is_empty:
        return []

    existing = slots_for_dates(db, room_id, plan.dates())
    by_ref = {SlotRef.from_slot(slot): slot for slot in existing}

    to_delete: list[TimeSlot] = []
    removed_refs: set[SlotRef] = set()
    for ref in plan.removals:
        if ref in removed_refs:
            continue
        slot = by_ref.get(ref)
        if slot is None:
            raise ResolutionFailureError(
                f"Slot {ref.slot_date.isoformat()} {ref.block.label()} is no longer held by {ref.user_id}"
            )
        to_delete.append(slot)
        removed_refs.add(ref)

    remaining = [ref for ref in by_ref if ref not in removed_refs]
    _check_no_double_booking(remaining, plan.insertions)

    for slot in to_delete:
        db.delete(slot)
    # Deletes must reach the database before reinserting the same keys
    db.flush()

    inserted = []
    for placement in plan.insertions:
        ref = placement.ref
        slot = TimeSlot(
            room_id=room_id,
            user_id=ref.user_id,
            slot_date=ref.slot_date,
            day=ref.day.value,
            start_minute=ref.start,
            end_minute=ref.end,
            status=placement.status.value,
            subject=placement.subject,
            negotiation_id=placement.negotiation_id,
        )
        db.add(slot)
        inserted.append(slot)
    db.flush()

    logger.debug(
        "Applied slot plan: removed=%d inserted=%d room=%s",
        len(to_delete),
        len(inserted),
        room_id,
    )
    return inserted
