"""Travel-mode auto-confirm sweep.

Rooms whose travel-mode decision has sat unconfirmed past its
`auto_confirm_at` deadline are confirmed automatically. Each room is
locked and committed on its own like any other room mutation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordination.core.structured_logging import build_log_context
from coordination.db.models import Room
from coordination.services import room_service
from coordination.services.errors import NotFoundError, VersionConflictError

logger = logging.getLogger(__name__)


def due_room_ids(db: Session, now: datetime) -> list:
    return list(
        db.execute(
            select(Room.id).where(
                Room.auto_confirm_at.is_not(None),
                Room.auto_confirm_at <= now,
                Room.travel_mode.is_not(None),
                Room.travel_mode_confirmed_at.is_(None),
            )
        ).scalars()
    )


def run_sweep(db: Session, now: datetime | None = None) -> int:
    """Confirm every due travel-mode decision; returns how many were confirmed."""
    now = now or datetime.now(timezone.utc)
    confirmed = 0
    for room_id in due_room_ids(db, now):
        try:
            room = room_service.get_room_for_update(db, room_id)
        except NotFoundError:
            continue
        if room.travel_mode_confirmed_at is not None:
            # Confirmed by hand between the scan and the lock
            db.rollback()
            continue
        room.travel_mode_confirmed_at = now
        try:
            room_service.commit_room(db, room)
        except VersionConflictError:
            logger.warning(
                "Auto-confirm skipped after concurrent update",
                extra=build_log_context(room_id=room_id),
            )
            continue
        confirmed += 1
        logger.info(
            "Travel mode auto-confirmed (%s)",
            room.travel_mode,
            extra=build_log_context(room_id=room_id),
        )
    return confirmed
