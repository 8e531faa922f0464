"""SQLAlchemy ORM models."""

from coordination.db.models.users import User
from coordination.db.models.rooms import (
    CarryOverEntry,
    MemberPreference,
    Room,
    RoomBlockedTime,
    RoomMember,
    RoomScheduleWindow,
)
from coordination.db.models.slots import TimeSlot
from coordination.db.models.exchange_requests import ExchangeRequest
from coordination.db.models.negotiations import (
    Negotiation,
    NegotiationMember,
    NegotiationMessage,
)

__all__ = [
    "CarryOverEntry",
    "ExchangeRequest",
    "MemberPreference",
    "Negotiation",
    "NegotiationMember",
    "NegotiationMessage",
    "Room",
    "RoomBlockedTime",
    "RoomMember",
    "RoomScheduleWindow",
    "TimeSlot",
    "User",
]
