"""Negotiation endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from coordination.core.deps import get_current_user, get_db, require_csrf_header
from coordination.core.rate_limit import limiter
from coordination.schemas.common import DatedBlockRead
from coordination.schemas.negotiation import (
    MessageCreate,
    NegotiationMemberRead,
    NegotiationMessageRead,
    NegotiationOpen,
    NegotiationRead,
    NegotiationRespond,
    SlotInfoRead,
)
from coordination.services import negotiation_service, room_service
from coordination.services.negotiation_service import NegotiationView
from coordination.utils.timeblocks import format_hhmm, parse_hhmm

router = APIRouter()


def _to_read(view: NegotiationView) -> NegotiationRead:
    negotiation = view.negotiation
    return NegotiationRead(
        id=negotiation.id,
        room_id=negotiation.room_id,
        type=negotiation.type,
        status=negotiation.status,
        slot_info=SlotInfoRead(
            slot_date=negotiation.slot_date,
            day=negotiation.day,
            start_time=format_hhmm(negotiation.start_minute),
            end_time=format_hhmm(negotiation.end_minute),
        ),
        week_start=negotiation.week_start,
        conflicting_members=[
            NegotiationMemberRead(
                user_id=m.user_id,
                required_slots=m.required_slots,
                response=m.response,
                yield_option=m.yield_option,
                alternative_slots=m.alternative_slots,
                chosen_slot=m.chosen_slot,
                responded_at=m.responded_at,
            )
            for m in negotiation.members
        ],
        member_specific_time_slots={
            str(user_id): [DatedBlockRead.model_validate(block.to_json()) for block in blocks]
            for user_id, blocks in view.member_specific_time_slots.items()
        },
        messages=[NegotiationMessageRead.model_validate(m) for m in negotiation.messages],
        resolution=negotiation.resolution,
        created_at=negotiation.created_at,
        resolved_at=negotiation.resolved_at,
    )


def _view(db: Session, room_id: UUID, negotiation) -> NegotiationRead:
    room = room_service.get_room(db, room_id)
    return _to_read(negotiation_service.build_view(db, room, negotiation))


@router.get("/{room_id}/negotiations", response_model=list[NegotiationRead])
def list_negotiations(
    room_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active negotiations the caller is part of, with each member's options."""
    views = negotiation_service.list_negotiations(db, room_id, user.id)
    return [_to_read(v) for v in views]


@router.post(
    "/{room_id}/negotiations",
    response_model=NegotiationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
def open_negotiation(
    room_id: UUID,
    data: NegotiationOpen,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open a negotiation over a clash (room owner only)."""
    try:
        start, end = parse_hhmm(data.start_time), parse_hhmm(data.end_time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    negotiation = negotiation_service.open_negotiation(
        db,
        room_id,
        user.id,
        negotiation_type=data.type,
        slot_date=data.slot_date,
        start=start,
        end=end,
        members=[(m.user_id, m.required_slots) for m in data.members],
    )
    return _view(db, room_id, negotiation)


@router.post(
    "/{room_id}/negotiations/{negotiation_id}/respond",
    response_model=NegotiationRead,
    dependencies=[Depends(require_csrf_header)],
)
def respond_to_negotiation(
    room_id: UUID,
    negotiation_id: UUID,
    data: NegotiationRespond,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Record the caller's answer.

    full_conflict: yield (yieldOption carry_over | alternative_time) or claim
    partial_conflict: split_first or split_second
    time_slot_choice: choose_slot with chosenSlot
    """
    negotiation = negotiation_service.respond(
        db,
        room_id,
        negotiation_id,
        user.id,
        response=data.response,
        yield_option=data.yield_option,
        alternative_slots=(
            [s.to_json() for s in data.alternative_slots] if data.alternative_slots else None
        ),
        chosen_slot=data.chosen_slot.to_json() if data.chosen_slot else None,
    )
    return _view(db, room_id, negotiation)


@router.post(
    "/{room_id}/negotiations/{negotiation_id}/cancel-response",
    response_model=NegotiationRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_negotiation_response(
    room_id: UUID,
    negotiation_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    negotiation = negotiation_service.cancel_response(db, room_id, negotiation_id, user.id)
    return _view(db, room_id, negotiation)


@router.post(
    "/{room_id}/negotiations/{negotiation_id}/messages",
    response_model=NegotiationMessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit("30/minute")
def post_negotiation_message(
    room_id: UUID,
    negotiation_id: UUID,
    data: MessageCreate,
    request: Request,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return negotiation_service.post_message(db, room_id, negotiation_id, user.id, data.body)
