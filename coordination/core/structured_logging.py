"""Structured logging helpers."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    room_id: str | None = None,
    request_id: str | None = None,
    negotiation_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the identifiers that are set."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if room_id:
        context["room_id"] = str(room_id)
    if request_id:
        context["exchange_request_id"] = str(request_id)
    if negotiation_id:
        context["negotiation_id"] = str(negotiation_id)
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
