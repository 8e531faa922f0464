"""Shared schema pieces: camelCase base model and time blocks."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HHMM_PATTERN = r"^\d{2}:\d{2}$"


class CamelModel(BaseModel):
    """Reads and writes camelCase JSON; accepts snake_case too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class DatedBlockIn(CamelModel):
    """A time range on one date, as sent by clients."""
    slot_date: date = Field(..., alias="date")
    start_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:MM format")
    end_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:MM format")

    def to_json(self) -> dict:
        return {
            "date": self.slot_date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


class DatedBlockRead(CamelModel):
    slot_date: date = Field(..., alias="date")
    start_time: str
    end_time: str


class SlotRefRead(CamelModel):
    """Snapshot of a user's block as stored on requests."""
    user_id: str
    slot_date: date = Field(..., alias="date")
    day: str
    start_time: str
    end_time: str
