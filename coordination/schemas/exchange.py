"""Exchange and chain request schemas."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import Field

from coordination.db.enums import ChainStatus, ExchangeType, Weekday
from coordination.schemas.common import HHMM_PATTERN, CamelModel, SlotRefRead
from coordination.utils.timeblocks import format_hhmm


# =============================================================================
# Requests
# =============================================================================

class ExchangeRequestCreate(CamelModel):
    """Ask a member for their block at a weekday and start time this week."""
    target_user_id: UUID
    target_day: Weekday
    target_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:MM format")
    requester_slot_ids: list[UUID] = Field(default_factory=list)
    message: str | None = Field(None, max_length=1000)


class ExchangeRespond(CamelModel):
    action: Literal["accept", "reject"]


class ChainConfirm(CamelModel):
    action: Literal["proceed", "cancel"]


# =============================================================================
# Responses
# =============================================================================

class ExchangeRequestRead(CamelModel):
    id: UUID
    room_id: UUID
    requester_id: UUID
    target_user_id: UUID
    type: str
    status: str
    message: str | None
    response: str | None
    requester_slots: list[SlotRefRead]
    target_slot: SlotRefRead
    chain_data: dict | None
    parent_request_id: UUID | None
    created_at: datetime
    responded_at: datetime | None


class AlternativeSlotRead(CamelModel):
    day: Weekday
    slot_date: date = Field(..., alias="date")
    start_time: str
    end_time: str

    @classmethod
    def from_alternative(cls, alternative) -> "AlternativeSlotRead | None":
        """Build from an alternative_slot_service.AlternativeSlot (minutes from midnight)."""
        if alternative is None:
            return None
        return cls(
            day=alternative.day,
            slot_date=alternative.slot_date,
            start_time=format_hhmm(alternative.start),
            end_time=format_hhmm(alternative.end),
        )


class ExchangeRespondResponse(CamelModel):
    request: ExchangeRequestRead
    exchange_type: ExchangeType
    alternative_slot: AlternativeSlotRead | None = None
    chain_request: ExchangeRequestRead | None = None


class ChainRespondResponse(CamelModel):
    request: ExchangeRequestRead
    original_request: ExchangeRequestRead
    chain_status: ChainStatus
    alternative_slot: AlternativeSlotRead | None = None
    next_request: ExchangeRequestRead | None = None
