"""Chain exchange hop endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coordination.core.deps import get_current_user, get_db, require_csrf_header
from coordination.schemas.exchange import (
    AlternativeSlotRead,
    ChainRespondResponse,
    ExchangeRequestRead,
    ExchangeRespond,
)
from coordination.services import chain_service

router = APIRouter()


@router.post(
    "/{room_id}/chain-exchange-requests/{request_id}/respond",
    response_model=ChainRespondResponse,
    dependencies=[Depends(require_csrf_header)],
)
def respond_to_chain_request(
    room_id: UUID,
    request_id: UUID,
    data: ExchangeRespond,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Answer a request to move so a chain exchange can complete.

    chainStatus:
    - completed: every hop moved in one commit
    - next_candidate: declined, the next candidate was asked
    - deeper: accepted, but the caller needs someone else to move first
    - failed: no candidate left, the original request is rejected
    """
    result = chain_service.respond_to_chain_request(db, room_id, request_id, user.id, data.action)
    return ChainRespondResponse(
        request=ExchangeRequestRead.model_validate(result.hop),
        original_request=ExchangeRequestRead.model_validate(result.original),
        chain_status=result.status,
        alternative_slot=AlternativeSlotRead.from_alternative(result.alternative_slot),
        next_request=(
            ExchangeRequestRead.model_validate(result.next_hop) if result.next_hop else None
        ),
    )
