"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coordination.db.base import Base
from coordination.db.enums import SlotStatus
from coordination.utils.timeblocks import SLOT_MINUTES, TimeBlock

if TYPE_CHECKING:
    from coordination.db.models import Room, User


class TimeSlot(Base):
    """
    Atomic 30-minute single-user reservation.

    A longer booking is several consecutive rows. Rows are never updated
    in place; every change removes and reinserts.
    """

    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint(
            "room_id", "user_id", "slot_date", "start_minute", name="uq_time_slot_user_start"
        ),
        Index("idx_time_slots_room_date", "room_id", "slot_date"),
        CheckConstraint(
            f"end_minute - start_minute = {SLOT_MINUTES}", name="ck_time_slot_atomic"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    day: Mapped[str] = mapped_column(String(10), nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), server_default=text(f"'{SlotStatus.CONFIRMED.value}'"), nullable=False
    )
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # Set while the slot is a provisional negotiation pick
    negotiation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("negotiations.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    room: Mapped["Room"] = relationship()
    user: Mapped["User"] = relationship()

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start_minute, self.end_minute)
