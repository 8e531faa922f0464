"""Chain Candidate Finder and Chain Exchange Engine.

When the target of an accepted exchange has nowhere to go, the engine asks
whoever sits in the target's preferred blocks to move, one hop at a time.
Each awaited answer is a pending `chain_request` row; slots are only
touched when the last asked user accepts and has a free alternative, and
then the whole hop sequence is committed in one plan.

Hop bookkeeping lives in `chain_data`:

    hops        users already committed to moving, in order, with the
                block each one vacates (hops[0] is the original target)
    chain_user  the user currently being asked
    chain_slot  the block that user would vacate
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordination.core.config import settings
from coordination.core.structured_logging import build_log_context
from coordination.db.enums import ChainStatus, ExchangeRequestStatus, ExchangeRequestType
from coordination.db.models import ExchangeRequest, Room
from coordination.services import room_service, slot_store
from coordination.services.alternative_slot_service import AlternativeSlot, find_alternative_slot
from coordination.services.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ResolutionFailureError,
)
from coordination.services.preference_service import preferred_blocks
from coordination.services.slot_store import SlotPlan, SlotRef
from coordination.utils.timeblocks import SLOT_MINUTES, TimeBlock, week_dates, week_start

logger = logging.getLogger(__name__)

CHAIN_SUBJECT = "Chain exchange"


@dataclass(frozen=True)
class ChainCandidate:
    """Someone occupying a block the seeker would accept."""

    user_id: UUID
    occupied: SlotRef
    days_from_today: int


@dataclass(frozen=True)
class Hop:
    user_id: UUID
    vacates: SlotRef

    def to_json(self) -> dict:
        return {"user_id": str(self.user_id), "vacates": self.vacates.to_json()}

    @classmethod
    def from_json(cls, data: dict) -> "Hop":
        return cls(UUID(data["user_id"]), SlotRef.from_json(data["vacates"]))


@dataclass
class ChainResult:
    status: ChainStatus
    hop: ExchangeRequest
    original: ExchangeRequest
    next_hop: ExchangeRequest | None = None
    alternative_slot: AlternativeSlot | None = None


# =============================================================================
# Candidate finder
# =============================================================================

def find_chain_candidates(
    db: Session,
    room: Room,
    user_id: UUID,
    required_minutes: int,
    exclude_user_ids: set[UUID],
    today: date,
) -> list[ChainCandidate]:
    """
    Everyone occupying `user_id`'s preferred blocks for the rest of this week.

    One candidate per user, at their earliest hit. The candidate's block
    is their consecutive run starting at the hit, clipped to
    `required_minutes`; shorter runs are skipped. Sorted by soonest date,
    then start time.
    """
    member = room.member_for(user_id)
    if member is None:
        return []

    dates = [d for d in week_dates(week_start(today)) if d >= today]
    slots = slot_store.slots_for_dates(db, room.id, dates)
    held = {(s.user_id, s.slot_date, s.start_minute) for s in slots}
    skip = set(exclude_user_ids) | {user_id}

    found: dict[UUID, ChainCandidate] = {}
    for day in dates:
        blocks = preferred_blocks(room, member, day)
        if not blocks:
            continue
        for slot in slots:
            if slot.slot_date != day or slot.user_id in skip or slot.user_id in found:
                continue
            window = TimeBlock(slot.start_minute, slot.start_minute + required_minutes)
            if not any(block.contains(window) for block in blocks):
                continue
            if all(
                (slot.user_id, day, start) in held
                for start in range(window.start, window.end, SLOT_MINUTES)
            ):
                found[slot.user_id] = ChainCandidate(
                    user_id=slot.user_id,
                    occupied=SlotRef(slot.user_id, day, window.start, window.end),
                    days_from_today=(day - today).days,
                )

    return sorted(found.values(), key=lambda c: (c.occupied.slot_date, c.occupied.start))


# =============================================================================
# Planning
# =============================================================================

def plan_chain_commit(
    original_requester_id: UUID,
    requester_slots: list[SlotRef],
    hops: list[Hop],
    final_user_id: UUID,
    final_vacates: SlotRef,
    destination: SlotRef,
) -> SlotPlan:
    """
    Whole-chain relocation.

    The original requester takes hops[0]'s block, each hop user takes the
    next vacated block, and the final user moves to `destination`.
    """
    plan = SlotPlan()
    for ref in requester_slots:
        plan.remove(ref)
    for hop in hops:
        plan.remove(hop.vacates)
    plan.remove(final_vacates)

    plan.insert(hops[0].vacates.moved_to(original_requester_id), subject=CHAIN_SUBJECT)
    for index, hop in enumerate(hops):
        takes = hops[index + 1].vacates if index + 1 < len(hops) else final_vacates
        plan.insert(takes.moved_to(hop.user_id), subject=CHAIN_SUBJECT)
    plan.insert(destination.moved_to(final_user_id), subject=CHAIN_SUBJECT)
    return plan


def _chain_refs(original: ExchangeRequest, data: dict) -> tuple[list[SlotRef], list[Hop], SlotRef]:
    requester_slots = [SlotRef.from_json(s) for s in original.requester_slots]
    hops = [Hop.from_json(h) for h in data["hops"]]
    return requester_slots, hops, SlotRef.from_json(data["chain_slot"])


# =============================================================================
# Hop records
# =============================================================================

def _new_hop(
    db: Session,
    room: Room,
    original: ExchangeRequest,
    seeker_id: UUID,
    hops: list[Hop],
    candidates: list[ChainCandidate],
    rejected: list[str],
    required_minutes: int,
) -> ExchangeRequest:
    first, remaining = candidates[0], candidates[1:]
    hop = ExchangeRequest(
        id=uuid.uuid4(),
        room_id=room.id,
        requester_id=seeker_id,
        target_user_id=first.user_id,
        type=ExchangeRequestType.CHAIN_REQUEST.value,
        status=ExchangeRequestStatus.PENDING.value,
        requester_slots=[],
        target_slot=first.occupied.to_json(),
        parent_request_id=original.id,
        message=(
            f"Would you move out of {first.occupied.slot_date.isoformat()} "
            f"{first.occupied.block.label()} so a chain exchange can complete?"
        ),
        chain_data={
            "original_request": str(original.id),
            "original_requester": str(original.requester_id),
            "intermediate_user": str(hops[0].user_id),
            "intermediate_slot": hops[0].vacates.to_json(),
            "chain_user": str(first.user_id),
            "chain_slot": first.occupied.to_json(),
            "required_minutes": required_minutes,
            "rejected_users": list(rejected),
            "candidate_users": [str(c.user_id) for c in remaining],
            "hops": [h.to_json() for h in hops],
        },
    )
    db.add(hop)
    logger.info(
        "Chain hop created: %s asked to move (depth %d)",
        first.user_id,
        len(hops) + 1,
        extra=build_log_context(room_id=room.id, request_id=original.id),
    )
    return hop


def _excluded_users(original: ExchangeRequest, hops: list[Hop], rejected: list[str]) -> set[UUID]:
    excluded = {original.requester_id}
    excluded.update(h.user_id for h in hops)
    excluded.update(UUID(r) for r in rejected)
    return excluded


def start_chain(
    db: Session,
    room: Room,
    original: ExchangeRequest,
    candidates: list[ChainCandidate],
) -> ExchangeRequest:
    """Ask the first candidate to move; nothing is mutated but request rows."""
    target_block = SlotRef.from_json(original.target_slot)
    hop = _new_hop(
        db,
        room,
        original,
        seeker_id=original.target_user_id,
        hops=[Hop(original.target_user_id, target_block)],
        candidates=candidates,
        rejected=[],
        required_minutes=target_block.minutes,
    )
    original.status = ExchangeRequestStatus.WAITING_FOR_CHAIN.value
    original.chain_data = {"candidate_users": [str(c.user_id) for c in candidates]}
    return hop


def close_chain(db: Session, original: ExchangeRequest, status: ExchangeRequestStatus) -> None:
    """Close the original request and every open hop of its chain."""
    db.flush()
    now = datetime.now(timezone.utc)
    original.status = status.value
    original.responded_at = original.responded_at or now
    open_hops = db.execute(
        select(ExchangeRequest).where(
            ExchangeRequest.parent_request_id == original.id,
            ExchangeRequest.status.in_([s.value for s in ExchangeRequestStatus.open_values()]),
        )
    ).scalars()
    for hop in open_hops:
        hop.status = status.value
        hop.responded_at = hop.responded_at or now


def _get_hop(db: Session, room: Room, request_id: UUID) -> ExchangeRequest:
    hop = db.get(ExchangeRequest, request_id)
    if not hop or hop.room_id != room.id:
        raise NotFoundError("Chain request not found")
    if hop.type != ExchangeRequestType.CHAIN_REQUEST.value:
        raise InvalidStateError("This is not a chain exchange request")
    return hop


# =============================================================================
# Hop responses
# =============================================================================

def respond_to_chain_request(
    db: Session,
    room_id: UUID,
    request_id: UUID,
    user_id: UUID,
    action: str,
    today: date | None = None,
) -> ChainResult:
    """
    Accept or decline a pending chain hop.

    Decline moves on to the next candidate (or fails the chain); accept
    completes the chain when the accepting user has a free alternative,
    otherwise recruits one hop deeper while CHAIN_MAX_DEPTH allows.

    Raises:
        ResolutionFailureError: accepted but the chain cannot complete
    """
    today = room_service.resolve_today(today)
    room = room_service.get_room_for_update(db, room_id)
    room_service.require_member(room, user_id)
    hop = _get_hop(db, room, request_id)

    if hop.target_user_id != user_id:
        raise ForbiddenError("Only the asked member can answer this chain request")
    if hop.status != ExchangeRequestStatus.PENDING.value:
        raise InvalidStateError(f"Chain request is already {hop.status}")

    data = dict(hop.chain_data or {})
    original = db.get(ExchangeRequest, UUID(data["original_request"]))
    if not original or original.status != ExchangeRequestStatus.WAITING_FOR_CHAIN.value:
        raise InvalidStateError("The exchange this chain belongs to is no longer open")

    hop.responded_at = datetime.now(timezone.utc)
    requester_slots, hops, chain_slot = _chain_refs(original, data)
    required = int(data["required_minutes"])
    rejected = list(data.get("rejected_users", []))
    context = build_log_context(room_id=room.id, user_id=user_id, request_id=original.id)

    if action == "reject":
        hop.status = ExchangeRequestStatus.REJECTED.value
        hop.response = "declined"
        rejected.append(str(user_id))
        seeker_id = hop.requester_id
        candidates = find_chain_candidates(
            db, room, seeker_id, required, _excluded_users(original, hops, rejected), today
        )
        if candidates:
            next_hop = _new_hop(db, room, original, seeker_id, hops, candidates, rejected, required)
            room_service.commit_room(db, room)
            logger.info("Chain hop declined, asking next candidate", extra=context)
            return ChainResult(ChainStatus.NEXT_CANDIDATE, hop, original, next_hop=next_hop)

        original.response = "No member could make room for this exchange"
        close_chain(db, original, ExchangeRequestStatus.REJECTED)
        room_service.commit_room(db, room)
        logger.info("Chain exhausted its candidates", extra=context)
        return ChainResult(ChainStatus.FAILED, hop, original)

    if action != "accept":
        raise InvalidStateError("action must be 'accept' or 'reject'")

    if not slot_store.holds_all(
        db, room.id, requester_slots + [h.vacates for h in hops] + [chain_slot]
    ):
        raise _fail_chain(db, room, original, "Slots changed since the chain started")

    alternative = find_alternative_slot(
        db,
        room,
        user_id,
        required,
        exclude_date=chain_slot.slot_date,
        slots_to_treat_as_free=requester_slots,
        today=today,
    )
    if alternative:
        plan = plan_chain_commit(
            original.requester_id,
            requester_slots,
            hops,
            user_id,
            chain_slot,
            alternative.ref(user_id),
        )
        slot_store.apply_plan(db, room.id, plan)
        hop.status = ExchangeRequestStatus.APPROVED.value
        hop.response = "accepted"
        close_chain(db, original, ExchangeRequestStatus.APPROVED)
        room_service.commit_room(db, room)
        logger.info("Chain exchange completed with %d hops", len(hops) + 1, extra=context)
        return ChainResult(ChainStatus.COMPLETED, hop, original, alternative_slot=alternative)

    deeper_hops = hops + [Hop(user_id, chain_slot)]
    if len(deeper_hops) < settings.CHAIN_MAX_DEPTH:
        candidates = find_chain_candidates(
            db, room, user_id, required, _excluded_users(original, deeper_hops, rejected), today
        )
        if candidates:
            hop.status = ExchangeRequestStatus.WAITING_FOR_CHAIN.value
            hop.response = "accepted"
            next_hop = _new_hop(
                db, room, original, user_id, deeper_hops, candidates, rejected, required
            )
            room_service.commit_room(db, room)
            logger.info("Chain going one hop deeper", extra=context)
            return ChainResult(ChainStatus.DEEPER, hop, original, next_hop=next_hop)

    raise _fail_chain(db, room, original, "No free slot for the last member of the chain")


def _fail_chain(
    db: Session, room: Room, original: ExchangeRequest, reason: str
) -> ResolutionFailureError:
    """Reject the chain, commit, and return the error for the caller to raise."""
    original.response = reason
    close_chain(db, original, ExchangeRequestStatus.REJECTED)
    room_service.commit_room(db, room)
    logger.info(
        "Chain failed: %s", reason, extra=build_log_context(room_id=room.id, request_id=original.id)
    )
    return ResolutionFailureError(reason)
