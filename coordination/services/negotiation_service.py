"""Negotiation service: validation, applying engine outcomes, auto-resolution.

All transition logic is in negotiation_engine; this module loads the
room, checks who may do what, turns Outcomes into slot plans, carry-over
credits and negotiation updates, and commits once.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordination.core.structured_logging import build_log_context
from coordination.db.enums import (
    ALLOWED_RESPONSES,
    MessageKind,
    NegotiationResponse,
    NegotiationStatus,
    NegotiationType,
    ResolutionType,
    SlotStatus,
    Weekday,
    YieldOption,
)
from coordination.db.models import (
    CarryOverEntry,
    Negotiation,
    NegotiationMember,
    NegotiationMessage,
    Room,
    TimeSlot,
)
from coordination.services import negotiation_engine as engine
from coordination.services import room_service, slot_store
from coordination.services.errors import ForbiddenError, InvalidStateError, NotFoundError
from coordination.services.negotiation_engine import (
    CarryOverCredit,
    DatedBlock,
    MemberState,
    NegotiationState,
    Outcome,
)
from coordination.services.preference_service import preferred_blocks
from coordination.services.slot_store import SlotPlan, SlotRef
from coordination.utils.timeblocks import (
    SLOT_MINUTES,
    TimeBlock,
    subtract_blocks,
    week_dates,
    week_start,
)

logger = logging.getLogger(__name__)

NEGOTIATION_SUBJECT = "Negotiation"


@dataclass
class NegotiationView:
    negotiation: Negotiation
    member_specific_time_slots: dict[UUID, list[DatedBlock]]


# =============================================================================
# Snapshots
# =============================================================================

def _member_state(member: NegotiationMember) -> MemberState:
    return MemberState(
        user_id=member.user_id,
        required_slots=member.required_slots,
        response=NegotiationResponse(member.response),
        yield_option=YieldOption(member.yield_option) if member.yield_option else None,
        alternative_slots=tuple(DatedBlock.from_json(s) for s in member.alternative_slots or []),
        chosen_slot=DatedBlock.from_json(member.chosen_slot) if member.chosen_slot else None,
    )


def build_state(negotiation: Negotiation) -> NegotiationState:
    return NegotiationState(
        negotiation_id=negotiation.id,
        type=NegotiationType(negotiation.type),
        window=DatedBlock(negotiation.slot_date, negotiation.window),
        members=tuple(_member_state(m) for m in negotiation.members),
    )


def _write_member(member: NegotiationMember, state: MemberState) -> None:
    member.response = state.response.value
    member.yield_option = state.yield_option.value if state.yield_option else None
    member.alternative_slots = [s.to_json() for s in state.alternative_slots] or None
    member.chosen_slot = state.chosen_slot.to_json() if state.chosen_slot else None
    if state.response == NegotiationResponse.PENDING:
        member.responded_at = None
    elif member.responded_at is None:
        member.responded_at = datetime.now(timezone.utc)


def _add_message(
    negotiation: Negotiation,
    body: str,
    kind: MessageKind = MessageKind.SYSTEM,
    author_id: UUID | None = None,
) -> NegotiationMessage:
    message = NegotiationMessage(
        position=len(negotiation.messages),
        kind=kind.value,
        author_id=author_id,
        body=body,
    )
    negotiation.messages.append(message)
    return message


# =============================================================================
# Lookups and options
# =============================================================================

def get_negotiation(db: Session, room: Room, negotiation_id: UUID) -> Negotiation:
    negotiation = db.get(Negotiation, negotiation_id)
    if not negotiation or negotiation.room_id != room.id:
        raise NotFoundError("Negotiation not found")
    return negotiation


def _provisional_slots(db: Session, negotiation: Negotiation) -> list[TimeSlot]:
    return list(
        db.execute(
            select(TimeSlot).where(
                TimeSlot.room_id == negotiation.room_id,
                TimeSlot.negotiation_id == negotiation.id,
            )
        ).scalars()
    )


def member_free_blocks(
    db: Session, room: Room, negotiation: Negotiation, user_id: UUID
) -> dict[date, list[TimeBlock]]:
    """
    Preferred blocks per date of the negotiation week minus occupied time.

    This negotiation's own provisional picks do not count as occupied, so
    members can still pick into each other's choices and collide.
    """
    member = room.member_for(user_id)
    if member is None:
        return {}
    slots = slot_store.slots_in_week(db, room.id, negotiation.week_start)
    free: dict[date, list[TimeBlock]] = {}
    for day in week_dates(negotiation.week_start):
        blocks = preferred_blocks(room, member, day)
        if not blocks:
            continue
        occupied = [
            s.block for s in slots if s.slot_date == day and s.negotiation_id != negotiation.id
        ]
        remaining = subtract_blocks(blocks, occupied)
        if remaining:
            free[day] = remaining
    return free


def member_options(
    db: Session, room: Room, negotiation: Negotiation, user_id: UUID
) -> list[DatedBlock]:
    """Windows of the member's required length they could take instead."""
    negotiation_member = negotiation.member_for(user_id)
    if negotiation_member is None:
        return []
    required = negotiation_member.required_slots * SLOT_MINUTES
    contested = DatedBlock(negotiation.slot_date, negotiation.window)
    skip_contested = negotiation.type == NegotiationType.FULL_CONFLICT.value

    options: list[DatedBlock] = []
    for day, blocks in member_free_blocks(db, room, negotiation, user_id).items():
        for block in blocks:
            start = block.start
            while start + required <= block.end:
                option = DatedBlock(day, TimeBlock(start, start + required))
                if not (skip_contested and option.overlaps(contested)):
                    options.append(option)
                start += required
    return options


def list_negotiations(db: Session, room_id: UUID, user_id: UUID) -> list[NegotiationView]:
    """Active negotiations the caller takes part in (all of them for the owner)."""
    room = room_service.get_room(db, room_id)
    owner = room_service.is_owner(room, user_id)
    if not owner:
        room_service.require_member(room, user_id)

    negotiations = db.execute(
        select(Negotiation)
        .where(
            Negotiation.room_id == room.id,
            Negotiation.status == NegotiationStatus.ACTIVE.value,
        )
        .order_by(Negotiation.slot_date, Negotiation.start_minute)
    ).scalars()

    return [
        build_view(db, room, negotiation)
        for negotiation in negotiations
        if owner or negotiation.member_for(user_id) is not None
    ]


def build_view(db: Session, room: Room, negotiation: Negotiation) -> NegotiationView:
    options = {}
    if negotiation.status == NegotiationStatus.ACTIVE.value:
        options = {
            m.user_id: member_options(db, room, negotiation, m.user_id) for m in negotiation.members
        }
    return NegotiationView(negotiation, options)


# =============================================================================
# Applying outcomes
# =============================================================================

def _credit_carry_over(room: Room, negotiation: Negotiation, credit: CarryOverCredit) -> bool:
    """Credit carry-over once per (member, negotiation)."""
    member = room.member_for(credit.user_id)
    if member is None:
        return False
    if any(entry.negotiation_id == negotiation.id for entry in member.carry_over_history):
        logger.info(
            "Carry-over already credited, skipping",
            extra=build_log_context(
                room_id=room.id, user_id=credit.user_id, negotiation_id=negotiation.id
            ),
        )
        return False
    member.carry_over_minutes += credit.minutes
    member.carry_over_history.append(
        CarryOverEntry(
            negotiation_id=negotiation.id,
            week_start=negotiation.week_start,
            minutes=credit.minutes,
            reason=credit.reason.value,
        )
    )
    return True


def _confirm_provisional(plan: SlotPlan, provisional: list[TimeSlot], skip: set[SlotRef]) -> None:
    for slot in provisional:
        ref = SlotRef.from_slot(slot)
        if ref in skip:
            continue
        plan.remove(ref)
        plan.insert(ref, subject=slot.subject, status=SlotStatus.CONFIRMED)


def _finish(negotiation: Negotiation, resolution: dict) -> None:
    negotiation.status = NegotiationStatus.RESOLVED.value
    negotiation.resolved_at = datetime.now(timezone.utc)
    negotiation.resolution = resolution


def apply_outcome(db: Session, room: Room, negotiation: Negotiation, outcome: Outcome) -> set[UUID]:
    """
    Apply an engine Outcome to the negotiation and the Slot Store.

    Returns the users credited carry-over.
    """
    plan = SlotPlan()
    provisional = _provisional_slots(db, negotiation)
    removed: set[SlotRef] = set()

    if outcome.clear_provisional_in is not None:
        for slot in provisional:
            if DatedBlock(slot.slot_date, slot.block).overlaps(outcome.clear_provisional_in):
                ref = SlotRef.from_slot(slot)
                plan.remove(ref)
                removed.add(ref)

    # Pieces a member already holds are not inserted twice
    held = {
        SlotRef.from_slot(slot)
        for slot in slot_store.slots_for_dates(
            db, room.id, {a.where.slot_date for a in outcome.assignments}
        )
    } - removed

    for assignment in outcome.assignments:
        where = assignment.where
        ref = SlotRef(assignment.user_id, where.slot_date, where.block.start, where.block.end)
        for piece in ref.atomic():
            if piece in held:
                continue
            if assignment.provisional:
                plan.insert(
                    piece,
                    subject=NEGOTIATION_SUBJECT,
                    status=SlotStatus.PENDING,
                    negotiation_id=negotiation.id,
                )
            else:
                plan.insert(piece, subject=NEGOTIATION_SUBJECT)

    if outcome.resolved:
        _confirm_provisional(plan, provisional, removed)

    slot_store.apply_plan(db, room.id, plan)

    for state in outcome.member_updates:
        member = negotiation.member_for(state.user_id)
        if member is not None:
            _write_member(member, state)

    if outcome.new_type is not None:
        negotiation.type = outcome.new_type.value
    if outcome.new_window is not None:
        negotiation.slot_date = outcome.new_window.slot_date
        negotiation.day = Weekday.of(outcome.new_window.slot_date).value
        negotiation.start_minute = outcome.new_window.block.start
        negotiation.end_minute = outcome.new_window.block.end

    credited = set()
    for credit in outcome.carry_overs:
        if _credit_carry_over(room, negotiation, credit):
            credited.add(credit.user_id)

    for body in outcome.messages:
        _add_message(negotiation, body)

    if outcome.resolved:
        _finish(
            negotiation,
            {
                "type": outcome.resolution_type.value,
                "winner": str(outcome.winner) if outcome.winner else None,
                "assignments": [
                    {"user_id": str(a.user_id), **a.where.to_json()} for a in outcome.assignments
                ],
                "carry_overs": [
                    {
                        "user_id": str(c.user_id),
                        "minutes": c.minutes,
                        "hours": c.minutes / 60,
                        "reason": c.reason.value,
                    }
                    for c in outcome.carry_overs
                ],
            },
        )
        logger.info(
            "Negotiation resolved (%s)",
            outcome.resolution_type.value,
            extra=build_log_context(room_id=room.id, negotiation_id=negotiation.id),
        )
    elif outcome.escalated:
        logger.info(
            "Negotiation escalated to %s",
            negotiation.type,
            extra=build_log_context(room_id=room.id, negotiation_id=negotiation.id),
        )
    return credited


def auto_resolve(
    db: Session,
    room: Room,
    answered: Negotiation,
    carried_over: set[UUID],
) -> list[Negotiation]:
    """
    Close every active negotiation of the week whose members are accounted for.

    A member is accounted for when their slots this week reach the room's
    weekly minimum, or they were just credited carry-over. For the
    negotiation that was answered, members short of the minimum must also
    have responded.
    """
    db.flush()
    minutes = slot_store.user_minutes_by_week(db, room.id, answered.week_start)

    def satisfied(user_id: UUID) -> bool:
        return minutes.get(user_id, 0) >= room.min_weekly_minutes

    candidates = db.execute(
        select(Negotiation).where(
            Negotiation.room_id == room.id,
            Negotiation.status == NegotiationStatus.ACTIVE.value,
            Negotiation.week_start == answered.week_start,
        )
    ).scalars()

    closed = []
    for negotiation in candidates:
        if negotiation.status != NegotiationStatus.ACTIVE.value:
            continue
        if not all(
            satisfied(m.user_id) or m.user_id in carried_over for m in negotiation.members
        ):
            continue
        if negotiation.id == answered.id and not all(
            satisfied(m.user_id) or m.response != NegotiationResponse.PENDING.value
            for m in negotiation.members
        ):
            continue

        plan = SlotPlan()
        _confirm_provisional(plan, _provisional_slots(db, negotiation), set())
        slot_store.apply_plan(db, room.id, plan)
        _finish(
            negotiation,
            {
                "type": ResolutionType.AUTO_RESOLVED.value,
                "reason": "all_members_accounted_for",
            },
        )
        _add_message(
            negotiation,
            "Every member's weekly time is covered or carried over; closed automatically.",
        )
        closed.append(negotiation)
        logger.info(
            "Negotiation auto-resolved",
            extra=build_log_context(room_id=room.id, negotiation_id=negotiation.id),
        )
    return closed


# =============================================================================
# Validation helpers
# =============================================================================

def _aligned(block: DatedBlock) -> bool:
    return (
        block.block.duration > 0
        and block.block.start % SLOT_MINUTES == 0
        and block.block.end % SLOT_MINUTES == 0
    )


def _within(free: dict[date, list[TimeBlock]], block: DatedBlock) -> bool:
    return any(b.contains(block.block) for b in free.get(block.slot_date, []))


def _parse_block(raw: dict | None, field_name: str) -> DatedBlock:
    try:
        block = DatedBlock.from_json(raw)
    except (KeyError, TypeError, ValueError):
        raise InvalidStateError(f"{field_name} must have date, start_time and end_time")
    if not _aligned(block):
        raise InvalidStateError(f"{field_name} must be aligned to {SLOT_MINUTES}-minute slots")
    return block


def _responded_elsewhere(
    db: Session, room: Room, negotiation: Negotiation, user_id: UUID
) -> bool:
    """Already answered another active negotiation contesting overlapping time this week."""
    contested = DatedBlock(negotiation.slot_date, negotiation.window)
    others = db.execute(
        select(Negotiation).where(
            Negotiation.room_id == room.id,
            Negotiation.status == NegotiationStatus.ACTIVE.value,
            Negotiation.week_start == negotiation.week_start,
            Negotiation.id != negotiation.id,
        )
    ).scalars()
    for other in others:
        member = other.member_for(user_id)
        if member is None or member.response == NegotiationResponse.PENDING.value:
            continue
        if DatedBlock(other.slot_date, other.window).overlaps(contested):
            return True
    return False


# =============================================================================
# Operations
# =============================================================================

def open_negotiation(
    db: Session,
    room_id: UUID,
    user_id: UUID,
    negotiation_type: NegotiationType,
    slot_date: date,
    start: int,
    end: int,
    members: list[tuple[UUID, int]],
) -> Negotiation:
    """Open a negotiation over a clash found by the initial assignment pass."""
    room = room_service.get_room_for_update(db, room_id)
    room_service.require_owner(room, user_id)

    window = DatedBlock(slot_date, TimeBlock(start, end))
    if not _aligned(window):
        raise InvalidStateError(f"Window must be aligned to {SLOT_MINUTES}-minute slots")
    user_ids = [uid for uid, _ in members]
    if len(set(user_ids)) != len(user_ids) or len(user_ids) < 2:
        raise InvalidStateError("A negotiation needs at least two distinct members")
    if negotiation_type == NegotiationType.PARTIAL_CONFLICT and len(user_ids) != 2:
        raise InvalidStateError("A partial conflict has exactly two members")
    for uid, required_slots in members:
        if room.member_for(uid) is None:
            raise NotFoundError(f"Member {uid} not found in this room")
        if required_slots < 1:
            raise InvalidStateError("required_slots must be at least 1")

    negotiation = Negotiation(
        room_id=room.id,
        type=negotiation_type.value,
        status=NegotiationStatus.ACTIVE.value,
        slot_date=slot_date,
        day=Weekday.of(slot_date).value,
        start_minute=start,
        end_minute=end,
        week_start=week_start(slot_date),
    )
    for position, (uid, required_slots) in enumerate(members):
        negotiation.members.append(
            NegotiationMember(
                user_id=uid,
                position=position,
                required_slots=required_slots,
                response=NegotiationResponse.PENDING.value,
            )
        )
    _add_message(negotiation, f"Negotiation opened for {window.label()}.")
    db.add(negotiation)
    room_service.commit_room(db, room)
    db.refresh(negotiation)
    return negotiation


def respond(
    db: Session,
    room_id: UUID,
    negotiation_id: UUID,
    user_id: UUID,
    response: str,
    yield_option: str | None = None,
    alternative_slots: list[dict] | None = None,
    chosen_slot: dict | None = None,
    rng: random.Random | None = None,
) -> Negotiation:
    """
    Record a member's answer, resolve when ready, then sweep the week.

    Raises:
        InvalidStateError: inactive, duplicate or malformed response
        ForbiddenError: caller is not a conflicting member
    """
    room = room_service.get_room_for_update(db, room_id)
    negotiation = get_negotiation(db, room, negotiation_id)
    if negotiation.status != NegotiationStatus.ACTIVE.value:
        raise InvalidStateError("Negotiation is not active")
    member = negotiation.member_for(user_id)
    if member is None:
        raise ForbiddenError("You are not part of this negotiation")

    try:
        answer = NegotiationResponse(response)
    except ValueError:
        raise InvalidStateError(f"Unknown response '{response}'")
    negotiation_type = NegotiationType(negotiation.type)
    if answer not in ALLOWED_RESPONSES[negotiation_type]:
        raise InvalidStateError(f"'{answer.value}' is not a valid answer to a {negotiation_type.value}")
    if member.response != NegotiationResponse.PENDING.value:
        raise InvalidStateError("You have already responded to this negotiation")
    if _responded_elsewhere(db, room, negotiation, user_id):
        raise InvalidStateError(
            "You already responded to another negotiation over this time this week"
        )

    contested = DatedBlock(negotiation.slot_date, negotiation.window)
    option: YieldOption | None = None
    alternatives: tuple[DatedBlock, ...] = ()
    chosen: DatedBlock | None = None

    if answer == NegotiationResponse.YIELD:
        try:
            option = YieldOption(yield_option) if yield_option else None
        except ValueError:
            option = None
        if option is None:
            raise InvalidStateError("yield needs yield_option 'carry_over' or 'alternative_time'")
        if option == YieldOption.ALTERNATIVE_TIME:
            if not alternative_slots:
                raise InvalidStateError("alternative_time needs at least one alternative slot")
            free = member_free_blocks(db, room, negotiation, user_id)
            alternatives = tuple(_parse_block(s, "alternative_slots") for s in alternative_slots)
            for alternative in alternatives:
                if alternative.overlaps(contested) or not _within(free, alternative):
                    raise InvalidStateError(f"{alternative.label()} is not free for you")
    elif answer == NegotiationResponse.CLAIM and chosen_slot:
        chosen = _parse_block(chosen_slot, "chosen_slot")
        if chosen.slot_date != contested.slot_date or not contested.block.contains(chosen.block):
            raise InvalidStateError("chosen_slot must lie inside the contested window")
    elif answer == NegotiationResponse.CHOOSE_SLOT:
        if not chosen_slot:
            raise InvalidStateError("choose_slot needs chosen_slot")
        chosen = _parse_block(chosen_slot, "chosen_slot")
        if not _within(member_free_blocks(db, room, negotiation, user_id), chosen):
            raise InvalidStateError(f"{chosen.label()} is not one of your available times")

    context = build_log_context(room_id=room.id, user_id=user_id, negotiation_id=negotiation.id)
    state = build_state(negotiation)
    carried: set[UUID] = set()

    if answer == NegotiationResponse.CHOOSE_SLOT:
        outcome = engine.choose_slot(state, user_id, chosen)
        carried |= apply_outcome(db, room, negotiation, outcome)
        state = engine.apply_member_updates(state, outcome.member_updates)
        escalated = outcome.escalated
    else:
        state = engine.with_response(state, user_id, answer, option, alternatives, chosen)
        _write_member(member, state.member(user_id))
        escalated = False

    logger.info("Negotiation response recorded: %s", answer.value, extra=context)

    if not escalated and engine.is_ready(state):
        outcome = engine.resolve(state, rng)
        carried |= apply_outcome(db, room, negotiation, outcome)

    if negotiation.status == NegotiationStatus.RESOLVED.value:
        carried |= {
            m.user_id for m in negotiation.members if m.yield_option == YieldOption.CARRY_OVER.value
        }
    auto_resolve(db, room, negotiation, carried)

    room_service.commit_room(db, room)
    db.refresh(negotiation)
    return negotiation


def cancel_response(db: Session, room_id: UUID, negotiation_id: UUID, user_id: UUID) -> Negotiation:
    """Withdraw a response, removing any slots it provisionally created."""
    room = room_service.get_room_for_update(db, room_id)
    negotiation = get_negotiation(db, room, negotiation_id)
    if negotiation.status != NegotiationStatus.ACTIVE.value:
        raise InvalidStateError("Negotiation is not active")
    member = negotiation.member_for(user_id)
    if member is None:
        raise ForbiddenError("You are not part of this negotiation")
    if member.response == NegotiationResponse.PENDING.value:
        raise InvalidStateError("You have not responded yet")

    plan = SlotPlan()
    for slot in _provisional_slots(db, negotiation):
        if slot.user_id == user_id:
            plan.remove(SlotRef.from_slot(slot))
    slot_store.apply_plan(db, room.id, plan)

    previous = member.response
    _write_member(member, _member_state(member).reset())
    _add_message(negotiation, f"A member withdrew their '{previous}' response.")

    room_service.commit_room(db, room)
    db.refresh(negotiation)
    logger.info(
        "Negotiation response cancelled",
        extra=build_log_context(room_id=room.id, user_id=user_id, negotiation_id=negotiation.id),
    )
    return negotiation


def post_message(
    db: Session, room_id: UUID, negotiation_id: UUID, user_id: UUID, body: str
) -> NegotiationMessage:
    room = room_service.get_room_for_update(db, room_id)
    negotiation = get_negotiation(db, room, negotiation_id)
    if negotiation.member_for(user_id) is None and not room_service.is_owner(room, user_id):
        raise ForbiddenError("You are not part of this negotiation")
    message = _add_message(negotiation, body, kind=MessageKind.MEMBER, author_id=user_id)
    room_service.commit_room(db, room)
    db.refresh(message)
    return message
