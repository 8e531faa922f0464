"""Exchange request endpoints: create, list, respond, cancel, chain confirmation."""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from coordination.core.deps import get_current_user, get_db, require_csrf_header
from coordination.core.rate_limit import limiter
from coordination.services import exchange_service
from coordination.services.exchange_service import ExchangeResult
from coordination.schemas.exchange import (
    AlternativeSlotRead,
    ChainConfirm,
    ExchangeRequestCreate,
    ExchangeRequestRead,
    ExchangeRespond,
    ExchangeRespondResponse,
)
from coordination.utils.timeblocks import parse_hhmm

router = APIRouter()


def _result_to_response(result: ExchangeResult) -> ExchangeRespondResponse:
    return ExchangeRespondResponse(
        request=ExchangeRequestRead.model_validate(result.request),
        exchange_type=result.exchange_type,
        alternative_slot=AlternativeSlotRead.from_alternative(result.alternative_slot),
        chain_request=(
            ExchangeRequestRead.model_validate(result.chain_request)
            if result.chain_request
            else None
        ),
    )


@router.get("/{room_id}/exchange-requests", response_model=list[ExchangeRequestRead])
def list_exchange_requests(
    room_id: UUID,
    box: Literal["sent", "received", "pending", "all"] = "received",
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List requests the caller sent, received, or still has to answer."""
    return exchange_service.list_requests(db, room_id, user.id, box)


@router.post(
    "/{room_id}/exchange-requests",
    response_model=ExchangeRequestRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit("20/minute")
def create_exchange_request(
    room_id: UUID,
    data: ExchangeRequestCreate,
    request: Request,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Ask another member for their slot, optionally offering slots in return."""
    try:
        target_time = parse_hhmm(data.target_time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return exchange_service.create_request(
        db,
        room_id,
        requester_id=user.id,
        target_user_id=data.target_user_id,
        target_day=data.target_day,
        target_time=target_time,
        requester_slot_ids=data.requester_slot_ids,
        message=data.message,
    )


@router.post(
    "/{room_id}/exchange-requests/{request_id}/respond",
    response_model=ExchangeRespondResponse,
    dependencies=[Depends(require_csrf_header)],
)
def respond_to_exchange_request(
    room_id: UUID,
    request_id: UUID,
    data: ExchangeRespond,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Accept or reject a request addressed to the caller.

    Accepting tries a direct swap, then relocating the caller, then a chain.
    """
    result = exchange_service.respond_to_request(db, room_id, request_id, user.id, data.action)
    return _result_to_response(result)


@router.post(
    "/{room_id}/exchange-requests/{request_id}/cancel",
    response_model=ExchangeRequestRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_exchange_request(
    room_id: UUID,
    request_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return exchange_service.cancel_request(db, room_id, request_id, user.id)


@router.post(
    "/{room_id}/exchange-requests/{request_id}/chain-confirm",
    response_model=ExchangeRespondResponse,
    dependencies=[Depends(require_csrf_header)],
)
def confirm_chain_exchange(
    room_id: UUID,
    request_id: UUID,
    data: ChainConfirm,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Requester lets the chain recruit third parties, or drops the request."""
    result = exchange_service.confirm_chain(db, room_id, request_id, user.id, data.action)
    return _result_to_response(result)
