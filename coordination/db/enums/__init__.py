"""Enum definitions for application constants."""

from coordination.db.enums.coordination import (
    ALLOWED_RESPONSES,
    CarryOverReason,
    ChainStatus,
    ExchangeRequestStatus,
    ExchangeRequestType,
    ExchangeType,
    MessageKind,
    NegotiationResponse,
    NegotiationStatus,
    NegotiationType,
    ResolutionType,
    SlotStatus,
    Weekday,
    YieldOption,
)

__all__ = [
    "ALLOWED_RESPONSES",
    "CarryOverReason",
    "ChainStatus",
    "ExchangeRequestStatus",
    "ExchangeRequestType",
    "ExchangeType",
    "MessageKind",
    "NegotiationResponse",
    "NegotiationStatus",
    "NegotiationType",
    "ResolutionType",
    "SlotStatus",
    "Weekday",
    "YieldOption",
]
