"""Slot exchange and negotiation enums."""

from datetime import date
from enum import Enum


class Weekday(str, Enum):
    """Day of week, ordered ISO style (Monday=0, Sunday=6)."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def number(self) -> int:
        return list(Weekday).index(self)

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        return list(cls)[index]

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls.from_index(day.weekday())


class SlotStatus(str, Enum):
    """Atomic slot status."""

    CONFIRMED = "confirmed"
    PENDING = "pending"  # Provisional (e.g. an unconfirmed time_slot_choice pick)
    CONFLICT = "conflict"


class ExchangeRequestType(str, Enum):
    """Point-to-point request kinds."""

    EXCHANGE_REQUEST = "exchange_request"
    CHAIN_REQUEST = "chain_request"  # Pending hop recruiting a third (or nth) party


class ExchangeRequestStatus(str, Enum):
    """
    Exchange request lifecycle.

    Flow: pending → approved
                 ↘ rejected
                 ↘ cancelled
                 ↘ waiting_for_chain → approved | rejected | cancelled
                 ↘ needs_chain_confirmation → waiting_for_chain | cancelled
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    WAITING_FOR_CHAIN = "waiting_for_chain"
    NEEDS_CHAIN_CONFIRMATION = "needs_chain_confirmation"

    @classmethod
    def open_values(cls) -> tuple["ExchangeRequestStatus", ...]:
        return (cls.PENDING, cls.WAITING_FOR_CHAIN, cls.NEEDS_CHAIN_CONFIRMATION)


class ExchangeType(str, Enum):
    """How an accepted exchange request was carried out."""

    DIRECT = "direct"
    RELOCATED = "relocated"
    CHAIN_STARTED = "chain_started"
    NEEDS_CHAIN_CONFIRMATION = "needs_chain_confirmation"
    REJECTED = "rejected"


class ChainStatus(str, Enum):
    """Outcome of answering a chain hop."""

    COMPLETED = "completed"
    NEXT_CANDIDATE = "next_candidate"
    DEEPER = "deeper"
    FAILED = "failed"


class NegotiationType(str, Enum):
    """
    How the contested time is structured.

    partial_conflict and time_slot_choice escalate to full_conflict when
    choices still collide.
    """

    FULL_CONFLICT = "full_conflict"
    PARTIAL_CONFLICT = "partial_conflict"
    TIME_SLOT_CHOICE = "time_slot_choice"


class NegotiationStatus(str, Enum):
    """Flow: active → resolved (terminal)."""

    ACTIVE = "active"
    RESOLVED = "resolved"


class NegotiationResponse(str, Enum):
    """Member answers to a negotiation."""

    PENDING = "pending"
    YIELD = "yield"
    CLAIM = "claim"
    SPLIT_FIRST = "split_first"
    SPLIT_SECOND = "split_second"
    CHOOSE_SLOT = "choose_slot"


class YieldOption(str, Enum):
    """What a yielding member takes instead."""

    CARRY_OVER = "carry_over"
    ALTERNATIVE_TIME = "alternative_time"


class ResolutionType(str, Enum):
    """How a negotiation was closed."""

    YIELDED = "yielded"
    SPLIT = "split"
    TIME_SLOT_CHOICE = "time_slot_choice"
    RANDOM = "random"
    AUTO_RESOLVED = "auto_resolved"


class CarryOverReason(str, Enum):
    """Why a member was credited carry-over minutes."""

    NEGOTIATION_YIELD = "negotiation_yield"
    NEGOTIATION_RANDOM_LOSS = "negotiation_random_loss"


class MessageKind(str, Enum):
    SYSTEM = "system"
    MEMBER = "member"


# Responses accepted per negotiation type
ALLOWED_RESPONSES: dict[NegotiationType, frozenset[NegotiationResponse]] = {
    NegotiationType.FULL_CONFLICT: frozenset({NegotiationResponse.YIELD, NegotiationResponse.CLAIM}),
    NegotiationType.PARTIAL_CONFLICT: frozenset(
        {NegotiationResponse.SPLIT_FIRST, NegotiationResponse.SPLIT_SECOND}
    ),
    NegotiationType.TIME_SLOT_CHOICE: frozenset({NegotiationResponse.CHOOSE_SLOT}),
}
