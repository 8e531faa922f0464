"""Negotiation schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import Field

from coordination.db.enums import NegotiationType
from coordination.schemas.common import HHMM_PATTERN, CamelModel, DatedBlockIn, DatedBlockRead


class NegotiationRespond(CamelModel):
    """A member's answer; which extras apply depends on `response`."""
    response: str
    yield_option: str | None = None
    alternative_slots: list[DatedBlockIn] | None = None
    chosen_slot: DatedBlockIn | None = None


class NegotiationMemberIn(CamelModel):
    user_id: UUID
    required_slots: int = Field(2, ge=1, le=48)


class NegotiationOpen(CamelModel):
    type: NegotiationType
    slot_date: date = Field(..., alias="date")
    start_time: str = Field(..., pattern=HHMM_PATTERN)
    end_time: str = Field(..., pattern=HHMM_PATTERN)
    members: list[NegotiationMemberIn] = Field(..., min_length=2)


class MessageCreate(CamelModel):
    body: str = Field(..., min_length=1, max_length=2000)


class SlotInfoRead(CamelModel):
    slot_date: date = Field(..., alias="date")
    day: str
    start_time: str
    end_time: str


class NegotiationMemberRead(CamelModel):
    user_id: UUID
    required_slots: int
    response: str
    yield_option: str | None = None
    alternative_slots: list[DatedBlockRead] | None = None
    chosen_slot: DatedBlockRead | None = None
    responded_at: datetime | None = None


class NegotiationMessageRead(CamelModel):
    id: UUID
    kind: str
    author_id: UUID | None
    body: str
    created_at: datetime


class NegotiationRead(CamelModel):
    id: UUID
    room_id: UUID
    type: str
    status: str
    slot_info: SlotInfoRead
    week_start: date
    conflicting_members: list[NegotiationMemberRead]
    # Keyed by user id; recomputed on every read
    member_specific_time_slots: dict[str, list[DatedBlockRead]] = Field(default_factory=dict)
    messages: list[NegotiationMessageRead] = Field(default_factory=list)
    resolution: dict | None = None
    created_at: datetime
    resolved_at: datetime | None = None
