"""Room aggregate access: per-room locking, membership checks, single commit."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from coordination.db.models import Room, RoomMember
from coordination.services.errors import ForbiddenError, NotFoundError, VersionConflictError

logger = logging.getLogger(__name__)


def resolve_today(today: date | None) -> date:
    return today or datetime.now(timezone.utc).date()


def get_room(db: Session, room_id: UUID) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise NotFoundError("Room not found")
    return room


def get_room_for_update(db: Session, room_id: UUID) -> Room:
    """
    Load the room row with a write lock.

    Every mutating operation starts here so that operations on one room
    run one at a time; the version column catches writers on backends
    without row locks.
    """
    room = db.execute(
        select(Room)
        .where(Room.id == room_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not room:
        raise NotFoundError("Room not found")
    return room


def require_member(room: Room, user_id: UUID) -> RoomMember:
    member = room.member_for(user_id)
    if not member:
        raise ForbiddenError("You are not a member of this room")
    return member


def is_owner(room: Room, user_id: UUID) -> bool:
    return room.owner_id == user_id


def require_owner(room: Room, user_id: UUID) -> None:
    if not is_owner(room, user_id):
        raise ForbiddenError("Only the room owner can do this")


def commit_room(db: Session, room: Room) -> None:
    """
    Commit the room aggregate once.

    Touching the room row bumps `version`, so a concurrent commit on the
    same room raises VersionConflictError instead of silently winning.
    """
    room_id = room.id
    room.updated_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning("Version conflict on room %s", room_id)
        raise VersionConflictError(room_id)
