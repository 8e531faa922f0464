"""Room slot listing."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coordination.core.deps import get_current_user, get_db
from coordination.schemas.slot import TimeSlotRead
from coordination.services import room_service, slot_store
from coordination.utils.timeblocks import format_hhmm, week_start

router = APIRouter()


@router.get("/{room_id}/slots", response_model=list[TimeSlotRead])
def list_slots(
    room_id: UUID,
    week: date | None = Query(None, alias="weekStart", description="Any date in the week"),
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Every slot in the room for one week (the current week by default)."""
    room = room_service.get_room(db, room_id)
    if not room_service.is_owner(room, user.id):
        room_service.require_member(room, user.id)

    monday = week_start(week or room_service.resolve_today(None))
    return [
        TimeSlotRead(
            id=slot.id,
            user_id=slot.user_id,
            slot_date=slot.slot_date,
            day=slot.day,
            start_time=format_hhmm(slot.start_minute),
            end_time=format_hhmm(slot.end_minute),
            status=slot.status,
            subject=slot.subject,
            negotiation_id=slot.negotiation_id,
        )
        for slot in slot_store.slots_in_week(db, room.id, monday)
    ]
