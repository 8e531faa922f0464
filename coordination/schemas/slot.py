"""Time slot schemas."""

from datetime import date
from uuid import UUID

from pydantic import Field

from coordination.schemas.common import CamelModel


class TimeSlotRead(CamelModel):
    id: UUID
    user_id: UUID
    slot_date: date = Field(..., alias="date")
    day: str
    start_time: str
    end_time: str
    status: str
    subject: str | None = None
    negotiation_id: UUID | None = None
