"""Exchange requests: creation, the accept cascade, cancellation and listing.

Accepting runs the cheapest resolution first:

    direct swap → relocate the target to a free slot → start a chain
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from coordination.core.config import settings
from coordination.core.structured_logging import build_log_context
from coordination.db.enums import (
    ExchangeRequestStatus,
    ExchangeRequestType,
    ExchangeType,
    Weekday,
)
from coordination.db.models import ExchangeRequest, Room, RoomMember
from coordination.services import chain_service, room_service, slot_store
from coordination.services.alternative_slot_service import AlternativeSlot, find_alternative_slot
from coordination.services.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ResolutionFailureError,
)
from coordination.services.preference_service import is_within_preferences
from coordination.services.slot_store import SlotPlan, SlotRef
from coordination.utils.timeblocks import SLOT_MINUTES, date_in_week, week_start

logger = logging.getLogger(__name__)

EXCHANGE_SUBJECT = "Exchange"


@dataclass
class ExchangeResult:
    request: ExchangeRequest
    exchange_type: ExchangeType
    alternative_slot: AlternativeSlot | None = None
    chain_request: ExchangeRequest | None = None


# =============================================================================
# Pure planners
# =============================================================================

def plan_direct_exchange(
    room: Room,
    requester: RoomMember,
    target: RoomMember,
    requester_slots: list[SlotRef],
    target_block: SlotRef,
) -> SlotPlan | None:
    """
    Straight swap when both sides land inside their own preferences.

    Needs at least one offered slot; a one-way ask never swaps.
    """
    if not requester_slots:
        return None
    if not is_within_preferences(room, requester, target_block.slot_date, target_block.block):
        return None
    for ref in requester_slots:
        if not is_within_preferences(room, target, ref.slot_date, ref.block):
            return None

    plan = SlotPlan()
    for ref in requester_slots:
        plan.remove(ref)
    plan.remove(target_block)
    plan.insert(target_block.moved_to(requester.user_id), subject=EXCHANGE_SUBJECT)
    for ref in requester_slots:
        plan.insert(ref.moved_to(target.user_id), subject=EXCHANGE_SUBJECT)
    return plan


def plan_relocation(
    requester_id: UUID,
    requester_slots: list[SlotRef],
    target_block: SlotRef,
    destination: SlotRef,
) -> SlotPlan:
    """Requester takes the target's block, the target moves to `destination`."""
    plan = SlotPlan()
    for ref in requester_slots:
        plan.remove(ref)
    plan.remove(target_block)
    plan.insert(destination, subject=EXCHANGE_SUBJECT)
    plan.insert(target_block.moved_to(requester_id), subject=EXCHANGE_SUBJECT)
    return plan


# =============================================================================
# Lookups
# =============================================================================

def get_request(db: Session, room: Room, request_id: UUID) -> ExchangeRequest:
    request = db.get(ExchangeRequest, request_id)
    if not request or request.room_id != room.id:
        raise NotFoundError("Request not found")
    return request


def list_requests(
    db: Session,
    room_id: UUID,
    user_id: UUID,
    box: str = "received",
) -> list[ExchangeRequest]:
    """Requests the caller sent, received, or still has to answer."""
    room = room_service.get_room(db, room_id)
    room_service.require_member(room, user_id)

    query = select(ExchangeRequest).where(ExchangeRequest.room_id == room.id)
    if box == "sent":
        query = query.where(ExchangeRequest.requester_id == user_id)
    elif box == "received":
        query = query.where(ExchangeRequest.target_user_id == user_id)
    elif box == "pending":
        query = query.where(
            ExchangeRequest.target_user_id == user_id,
            ExchangeRequest.status == ExchangeRequestStatus.PENDING.value,
        )
    elif box == "all":
        query = query.where(
            or_(ExchangeRequest.requester_id == user_id, ExchangeRequest.target_user_id == user_id)
        )
    else:
        raise InvalidStateError(f"Unknown box '{box}'")
    return list(db.execute(query.order_by(ExchangeRequest.created_at.desc())).scalars())


# =============================================================================
# Create
# =============================================================================

def create_request(
    db: Session,
    room_id: UUID,
    requester_id: UUID,
    target_user_id: UUID,
    target_day: Weekday,
    target_time: int,
    requester_slot_ids: list[UUID],
    message: str | None = None,
    today: date | None = None,
) -> ExchangeRequest:
    """
    Ask `target_user_id` for their block at `target_day`/`target_time` this week.

    The asked block is the target's consecutive run starting at that time,
    sized to the number of offered slots (the whole run for a one-way ask).
    """
    today = room_service.resolve_today(today)
    room = room_service.get_room_for_update(db, room_id)
    room_service.require_member(room, requester_id)

    if not room.member_for(target_user_id):
        raise NotFoundError("Target member not found in this room")
    if target_user_id == requester_id:
        raise InvalidStateError("You cannot request your own slot")

    offered = slot_store.get_slots_by_ids(db, room.id, requester_slot_ids)
    if len(offered) != len(set(requester_slot_ids)):
        raise InvalidStateError("One or more offered slots do not exist in this room")
    if any(slot.user_id != requester_id for slot in offered):
        raise InvalidStateError("You can only offer your own slots")

    target_date = date_in_week(week_start(today), target_day)
    run = slot_store.user_run_from(
        db,
        room.id,
        target_user_id,
        target_date,
        target_time,
        max_slots=len(offered) or None,
    )
    if not run:
        raise NotFoundError("Target slot not found")
    target_block = SlotRef(target_user_id, target_date, target_time, target_time + len(run) * SLOT_MINUTES)

    open_statuses = [s.value for s in ExchangeRequestStatus.open_values()]
    for existing in db.execute(
        select(ExchangeRequest).where(
            ExchangeRequest.room_id == room.id,
            ExchangeRequest.requester_id == requester_id,
            ExchangeRequest.target_user_id == target_user_id,
            ExchangeRequest.type == ExchangeRequestType.EXCHANGE_REQUEST.value,
            ExchangeRequest.status.in_(open_statuses),
        )
    ).scalars():
        if SlotRef.from_json(existing.target_slot).block.overlaps(target_block.block) and (
            existing.target_slot["date"] == target_date.isoformat()
        ):
            raise InvalidStateError("You already have an open request for this slot")

    request = ExchangeRequest(
        room_id=room.id,
        requester_id=requester_id,
        target_user_id=target_user_id,
        type=ExchangeRequestType.EXCHANGE_REQUEST.value,
        status=ExchangeRequestStatus.PENDING.value,
        message=message,
        requester_slots=[SlotRef.from_slot(slot).to_json() for slot in offered],
        target_slot=target_block.to_json(),
    )
    db.add(request)
    room_service.commit_room(db, room)
    db.refresh(request)

    logger.info(
        "Exchange request created for %s %s",
        target_date.isoformat(),
        target_block.block.label(),
        extra=build_log_context(room_id=room.id, user_id=requester_id, request_id=request.id),
    )
    return request


# =============================================================================
# Respond
# =============================================================================

def _reject_unresolvable(
    db: Session, room: Room, request: ExchangeRequest, reason: str
) -> ResolutionFailureError:
    request.status = ExchangeRequestStatus.REJECTED.value
    request.response = reason
    room_service.commit_room(db, room)
    logger.info(
        "Exchange request could not be resolved: %s",
        reason,
        extra=build_log_context(room_id=room.id, request_id=request.id),
    )
    return ResolutionFailureError(reason)


def respond_to_request(
    db: Session,
    room_id: UUID,
    request_id: UUID,
    user_id: UUID,
    action: str,
    today: date | None = None,
) -> ExchangeResult:
    """
    Target accepts or rejects an exchange request.

    Raises:
        ResolutionFailureError: accepted, but no swap, relocation or chain
            candidate exists; the request is rejected and no slot changes
    """
    today = room_service.resolve_today(today)
    room = room_service.get_room_for_update(db, room_id)
    target = room_service.require_member(room, user_id)
    request = get_request(db, room, request_id)

    if request.type != ExchangeRequestType.EXCHANGE_REQUEST.value:
        raise InvalidStateError("Chain requests are answered through the chain endpoint")
    if request.target_user_id != user_id:
        raise ForbiddenError("Only the asked member can respond to this request")
    if request.status != ExchangeRequestStatus.PENDING.value:
        raise InvalidStateError(f"Request is already {request.status}")
    if action not in ("accept", "reject"):
        raise InvalidStateError("action must be 'accept' or 'reject'")

    request.responded_at = datetime.now(timezone.utc)
    context = build_log_context(room_id=room.id, user_id=user_id, request_id=request.id)

    if action == "reject":
        request.status = ExchangeRequestStatus.REJECTED.value
        request.response = "rejected"
        room_service.commit_room(db, room)
        logger.info("Exchange request rejected", extra=context)
        return ExchangeResult(request, ExchangeType.REJECTED)

    requester = room.member_for(request.requester_id)
    if requester is None:
        raise _reject_unresolvable(db, room, request, "Requester has left the room")

    requester_slots = [SlotRef.from_json(s) for s in request.requester_slots]
    target_block = SlotRef.from_json(request.target_slot)
    if not slot_store.holds_all(db, room.id, requester_slots + [target_block]):
        raise _reject_unresolvable(db, room, request, "Slots changed since the request was made")

    plan = plan_direct_exchange(room, requester, target, requester_slots, target_block)
    if plan is not None:
        slot_store.apply_plan(db, room.id, plan)
        request.status = ExchangeRequestStatus.APPROVED.value
        request.response = "accepted"
        room_service.commit_room(db, room)
        logger.info("Exchange completed as a direct swap", extra=context)
        return ExchangeResult(request, ExchangeType.DIRECT)

    alternative = find_alternative_slot(
        db,
        room,
        user_id,
        target_block.minutes,
        exclude_date=target_block.slot_date,
        slots_to_treat_as_free=requester_slots,
        today=today,
    )
    if alternative is not None:
        plan = plan_relocation(
            request.requester_id, requester_slots, target_block, alternative.ref(user_id)
        )
        slot_store.apply_plan(db, room.id, plan)
        request.status = ExchangeRequestStatus.APPROVED.value
        request.response = "accepted"
        room_service.commit_room(db, room)
        logger.info("Exchange completed by relocating the target", extra=context)
        return ExchangeResult(request, ExchangeType.RELOCATED, alternative_slot=alternative)

    candidates = chain_service.find_chain_candidates(
        db,
        room,
        user_id,
        target_block.minutes,
        exclude_user_ids={request.requester_id},
        today=today,
    )
    if not candidates:
        raise _reject_unresolvable(
            db, room, request, "No alternative slot and no chain candidates"
        )

    if settings.CHAIN_REQUIRES_CONFIRMATION:
        request.status = ExchangeRequestStatus.NEEDS_CHAIN_CONFIRMATION.value
        request.chain_data = {"candidate_users": [str(c.user_id) for c in candidates]}
        room_service.commit_room(db, room)
        logger.info("Chain exchange awaiting requester confirmation", extra=context)
        return ExchangeResult(request, ExchangeType.NEEDS_CHAIN_CONFIRMATION)

    hop = chain_service.start_chain(db, room, request, candidates)
    room_service.commit_room(db, room)
    logger.info("Chain exchange started", extra=context)
    return ExchangeResult(request, ExchangeType.CHAIN_STARTED, chain_request=hop)


# =============================================================================
# Chain confirmation and cancellation
# =============================================================================

def confirm_chain(
    db: Session,
    room_id: UUID,
    request_id: UUID,
    user_id: UUID,
    action: str,
    today: date | None = None,
) -> ExchangeResult:
    """Requester decides whether third parties may be asked to move."""
    today = room_service.resolve_today(today)
    room = room_service.get_room_for_update(db, room_id)
    room_service.require_member(room, user_id)
    request = get_request(db, room, request_id)

    if request.requester_id != user_id:
        raise ForbiddenError("Only the requester can confirm a chain exchange")
    if request.status != ExchangeRequestStatus.NEEDS_CHAIN_CONFIRMATION.value:
        raise InvalidStateError("This request is not waiting for chain confirmation")
    if action not in ("proceed", "cancel"):
        raise InvalidStateError("action must be 'proceed' or 'cancel'")

    if action == "cancel":
        request.status = ExchangeRequestStatus.CANCELLED.value
        request.response = "chain cancelled by requester"
        room_service.commit_room(db, room)
        return ExchangeResult(request, ExchangeType.REJECTED)

    target_block = SlotRef.from_json(request.target_slot)
    requester_slots = [SlotRef.from_json(s) for s in request.requester_slots]
    if not slot_store.holds_all(db, room.id, requester_slots + [target_block]):
        raise _reject_unresolvable(db, room, request, "Slots changed since the request was made")

    candidates = chain_service.find_chain_candidates(
        db,
        room,
        request.target_user_id,
        target_block.minutes,
        exclude_user_ids={request.requester_id},
        today=today,
    )
    if not candidates:
        raise _reject_unresolvable(db, room, request, "No chain candidates remain")

    hop = chain_service.start_chain(db, room, request, candidates)
    room_service.commit_room(db, room)
    return ExchangeResult(request, ExchangeType.CHAIN_STARTED, chain_request=hop)


def cancel_request(db: Session, room_id: UUID, request_id: UUID, user_id: UUID) -> ExchangeRequest:
    """Requester withdraws a request; any pending chain hop is cancelled too."""
    room = room_service.get_room_for_update(db, room_id)
    room_service.require_member(room, user_id)
    request = get_request(db, room, request_id)

    if request.type != ExchangeRequestType.EXCHANGE_REQUEST.value:
        raise InvalidStateError("Chain requests cannot be cancelled directly")
    if request.requester_id != user_id:
        raise ForbiddenError("Only the requester can cancel this request")
    if request.status not in [s.value for s in ExchangeRequestStatus.open_values()]:
        raise InvalidStateError(f"Request is already {request.status}")

    chain_service.close_chain(db, request, ExchangeRequestStatus.CANCELLED)
    room_service.commit_room(db, room)
    logger.info(
        "Exchange request cancelled",
        extra=build_log_context(room_id=room.id, user_id=user_id, request_id=request.id),
    )
    return request
