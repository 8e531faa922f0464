"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema rebuilt for every test
- Builders for users, rooms, preferences and slots
- HTTPX AsyncClient authenticated as any user
"""
import os
import uuid
from datetime import date
from typing import AsyncGenerator, Generator

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from coordination.main import app
from coordination.core.deps import get_db, COOKIE_NAME
from coordination.core.security import create_session_token
from coordination.db.base import Base
from coordination.db.enums import Weekday
from coordination.db.models import MemberPreference, Room, RoomMember, TimeSlot, User
from coordination.db.session import engine, SessionLocal
from coordination.utils.timeblocks import SLOT_MINUTES, parse_hhmm


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    Services commit, so isolation comes from recreating the tables
    rather than rolling back a savepoint.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


# =============================================================================
# Builders
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    """Factory: make_user("alice") -> User."""
    def _make(name: str = "member") -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"{name}-{uuid.uuid4().hex[:8]}@test.com",
            display_name=name.title(),
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_room(db: Session):
    """Factory: make_room(owner, members=[...]) -> Room."""
    def _make(
        owner: User,
        members: list[User] = (),
        min_weekly_minutes: int = 60,
        name: str = "Study Room",
    ) -> Room:
        room = Room(
            id=uuid.uuid4(),
            name=name,
            owner_id=owner.id,
            min_weekly_minutes=min_weekly_minutes,
        )
        for user in members:
            room.members.append(RoomMember(user_id=user.id))
        db.add(room)
        db.commit()
        return room
    return _make


@pytest.fixture
def add_preference(db: Session):
    """Factory: add_preference(room, user, Weekday.MONDAY | date, "09:00", "10:00")."""
    def _add(
        room: Room,
        user: User,
        day: Weekday | date,
        start: str,
        end: str,
        priority: int = 2,
    ) -> MemberPreference:
        member = room.member_for(user.id)
        entry = MemberPreference(
            start_minute=parse_hhmm(start),
            end_minute=parse_hhmm(end),
            priority=priority,
        )
        if isinstance(day, Weekday):
            entry.day_of_week = day.value
        else:
            entry.specific_date = day
        member.preferences.append(entry)
        db.commit()
        return entry
    return _add


@pytest.fixture
def add_slots(db: Session):
    """Factory: add_slots(room, user, date, "09:00", "10:00") -> atomic TimeSlots."""
    def _add(
        room: Room,
        user: User,
        slot_date: date,
        start: str,
        end: str,
        subject: str | None = None,
    ) -> list[TimeSlot]:
        slots = []
        for minute in range(parse_hhmm(start), parse_hhmm(end), SLOT_MINUTES):
            slot = TimeSlot(
                id=uuid.uuid4(),
                room_id=room.id,
                user_id=user.id,
                slot_date=slot_date,
                day=Weekday.of(slot_date).value,
                start_minute=minute,
                end_minute=minute + SLOT_MINUTES,
                subject=subject,
            )
            db.add(slot)
            slots.append(slot)
        db.commit()
        return slots
    return _add


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client_for(db: Session):
    """
    Factory: authed_client_for(user) -> AsyncClient with session cookie and CSRF header.
    """
    clients: list[AsyncClient] = []

    def override_get_db():
        try:
            yield db
        finally:
            # Whatever a failed request left uncommitted is discarded
            db.rollback()

    app.dependency_overrides[get_db] = override_get_db

    def _client(user: User, csrf: bool = True) -> AsyncClient:
        token = create_session_token(user_id=user.id, token_version=user.token_version)
        headers = {"X-Requested-With": "XMLHttpRequest"} if csrf else {}
        c = AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            cookies={COOKIE_NAME: token},
            headers=headers,
        )
        clients.append(c)
        return c

    yield _client

    for c in clients:
        await c.aclose()
    app.dependency_overrides.clear()
