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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coordination.core.config import settings
from coordination.db.base import Base
from coordination.utils.timeblocks import TimeBlock

if TYPE_CHECKING:
    from coordination.db.models import User


class Room(Base):
    """
    A scheduling room: the aggregate every slot operation locks and commits.

    `version` is the optimistic-concurrency counter; every mutating
    operation touches the row so concurrent writers collide on it.
    """

    __tablename__ = "rooms"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Weekly minutes every member should end up with
    min_weekly_minutes: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.DEFAULT_MIN_WEEKLY_MINUTES, nullable=False
    )

    # Travel-mode decision (calculation happens elsewhere)
    travel_mode: Mapped[str | None] = mapped_column(String(30), nullable=True)
    auto_confirm_at: Mapped[datetime | None] = mapped_column(nullable=True)
    travel_mode_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    owner: Mapped["User"] = relationship()
    members: Mapped[list["RoomMember"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="RoomMember.joined_at"
    )
    schedule_windows: Mapped[list["RoomScheduleWindow"]] = relationship(
        cascade="all, delete-orphan"
    )
    blocked_times: Mapped[list["RoomBlockedTime"]] = relationship(cascade="all, delete-orphan")

    def member_for(self, user_id: uuid.UUID) -> "RoomMember | None":
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None


class RoomScheduleWindow(Base):
    """
    Owner's allowed schedule window.

    Either recurring by weekday or pinned to one date; pinned windows
    replace the weekday windows for that date.
    """

    __tablename__ = "room_schedule_windows"
    __table_args__ = (
        Index("idx_room_schedule_windows_room", "room_id"),
        CheckConstraint("start_minute < end_minute", name="ck_schedule_window_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[str | None] = mapped_column(String(10), nullable=True)
    specific_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start_minute, self.end_minute)


class RoomBlockedTime(Base):
    """Daily interval where nothing may be scheduled (e.g. lunch)."""

    __tablename__ = "room_blocked_times"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), default="blocked", nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start_minute, self.end_minute)


class RoomMember(Base):
    """Room-scoped member state: preferences and carry-over balance."""

    __tablename__ = "room_members"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_member"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Accumulated minutes owed from lost negotiations
    carry_over_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    room: Mapped["Room"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()
    preferences: Mapped[list["MemberPreference"]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )
    carry_over_history: Mapped[list["CarryOverEntry"]] = relationship(
        back_populates="member", cascade="all, delete-orphan", order_by="CarryOverEntry.created_at"
    )


class MemberPreference(Base):
    """
    Preferred-time declaration.

    Recurring by weekday or pinned to a specific date. Priority >= 2
    means "preferred"; lower priorities only mark a day as possible.
    """

    __tablename__ = "member_preferences"
    __table_args__ = (
        Index("idx_member_preferences_member", "member_id"),
        CheckConstraint("start_minute < end_minute", name="ck_member_preference_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("room_members.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[str | None] = mapped_column(String(10), nullable=True)
    specific_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    member: Mapped["RoomMember"] = relationship(back_populates="preferences")

    @property
    def block(self) -> TimeBlock:
        return TimeBlock(self.start_minute, self.end_minute)


class CarryOverEntry(Base):
    """
    Append-only carry-over credit.

    At most one entry per (member, negotiation) so re-running a
    resolution cannot credit twice.
    """

    __tablename__ = "carry_over_entries"
    __table_args__ = (
        UniqueConstraint("member_id", "negotiation_id", name="uq_carry_over_negotiation"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("room_members.id", ondelete="CASCADE"), nullable=False
    )
    negotiation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("negotiations.id", ondelete="SET NULL"), nullable=True
    )
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    member: Mapped["RoomMember"] = relationship(back_populates="carry_over_history")

    @property
    def hours(self) -> float:
        return self.minutes / 60
