"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coordination.db.base import Base
from coordination.db.enums import NegotiationResponse, NegotiationStatus
from coordination.utils.timeblocks import TimeBlock

if TYPE_CHECKING:
    from coordination.db.models import Room, User


class Negotiation(Base):
    """
    Group resolution over one contested window.

    `type` changes as members respond (escalation to full_conflict);
    `status` is terminal once resolved.
    """

    __tablename__ = "negotiations"
    __table_args__ = (Index("idx_negotiations_room_status", "room_id", "status", "week_start"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), server_default=text(f"'{NegotiationStatus.ACTIVE.value}'"), nullable=False
    )

    # Contested window (slotInfo)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    day: Mapped[str] = mapped_column(String(10), nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)

    resolution: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    room: Mapped["Room"] = relationship()
    members: Mapped[list["NegotiationMember"]] = relationship(
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="NegotiationMember.position",
    )
    messages: Mapped[list["NegotiationMessage"]] = relationship(
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="NegotiationMessage.position",
    )

    @property
    def window(self) -> TimeBlock:
        return TimeBlock(self.start_minute, self.end_minute)

    def member_for(self, user_id: uuid.UUID) -> "NegotiationMember | None":
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None


class NegotiationMember(Base):
    """One conflicting member and their current answer."""

    __tablename__ = "negotiation_members"
    __table_args__ = (
        UniqueConstraint("negotiation_id", "user_id", name="uq_negotiation_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    negotiation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    required_slots: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    response: Mapped[str] = mapped_column(
        String(20), server_default=text(f"'{NegotiationResponse.PENDING.value}'"), nullable=False
    )
    yield_option: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # [{date, start_time, end_time}]
    alternative_slots: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # {date, start_time, end_time}
    chosen_slot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    negotiation: Mapped["Negotiation"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()


class NegotiationMessage(Base):
    """System or member message attached to a negotiation."""

    __tablename__ = "negotiation_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    negotiation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    negotiation: Mapped["Negotiation"] = relationship(back_populates="messages")
