"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coordination.db.base import Base
from coordination.db.enums import ExchangeRequestStatus, ExchangeRequestType

if TYPE_CHECKING:
    from coordination.db.models import Room, User


class ExchangeRequest(Base):
    """
    Point-to-point exchange ask, or a pending chain hop.

    Slot references are snapshots ({user_id, date, day, start_time,
    end_time}) because slot rows are replaced on every mutation.
    JSON columns are reassigned, never mutated in place.

    chain_data (chain hops and originals waiting on one):
        original_request, original_requester, intermediate_user,
        intermediate_slot, chain_user, chain_slot, required_minutes,
        rejected_users, candidate_users, hops
    """

    __tablename__ = "exchange_requests"
    __table_args__ = (
        Index("idx_exchange_requests_room_status", "room_id", "status"),
        Index("idx_exchange_requests_target", "target_user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(
        String(30),
        server_default=text(f"'{ExchangeRequestType.EXCHANGE_REQUEST.value}'"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(30),
        server_default=text(f"'{ExchangeRequestStatus.PENDING.value}'"),
        nullable=False,
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response: Mapped[str | None] = mapped_column(Text, nullable=True)

    requester_slots: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    target_slot: Mapped[dict] = mapped_column(JSON, nullable=False)
    chain_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Chain hops point at the exchange request that started the chain
    parent_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("exchange_requests.id", ondelete="CASCADE"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    room: Mapped["Room"] = relationship()
    requester: Mapped["User"] = relationship(foreign_keys=[requester_id])
    target_user: Mapped["User"] = relationship(foreign_keys=[target_user_id])
