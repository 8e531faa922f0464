"""Exception hierarchy shared by the coordination services.

Each exception carries the HTTP status the API layer reports for it.
"""


class CoordinationError(Exception):
    """Base exception for slot exchange and negotiation operations."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(CoordinationError):
    """Room, request, negotiation, member or slot is absent."""

    status_code = 404


class ForbiddenError(CoordinationError):
    """Caller is not a member, not the owner, or not the expected respondent."""

    status_code = 403


class InvalidStateError(CoordinationError):
    """Already resolved, duplicate response, or a no-op request."""

    status_code = 400


class ResolutionFailureError(CoordinationError):
    """No alternative slot and no chain candidate; terminal, nothing mutated."""

    status_code = 400


class VersionConflictError(CoordinationError):
    """Another operation committed against the same room first."""

    status_code = 409

    def __init__(self, room_id):
        super().__init__(f"Room {room_id} was modified concurrently, retry the operation")
        self.room_id = room_id
