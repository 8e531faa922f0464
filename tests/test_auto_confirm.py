"""Tests for the travel-mode auto-confirm sweep and its internal endpoint."""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from coordination.services import auto_confirm_service


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def rooms(db, make_user, make_room):
    """due, not yet due, already confirmed, and no travel mode at all."""
    owner = make_user("owner")
    due = make_room(owner, name="due")
    due.travel_mode = "remote"
    due.auto_confirm_at = NOW - timedelta(hours=1)

    later = make_room(owner, name="later")
    later.travel_mode = "in_person"
    later.auto_confirm_at = NOW + timedelta(hours=1)

    confirmed = make_room(owner, name="confirmed")
    confirmed.travel_mode = "remote"
    confirmed.auto_confirm_at = NOW - timedelta(days=1)
    confirmed.travel_mode_confirmed_at = NOW - timedelta(hours=2)

    undecided = make_room(owner, name="undecided")
    undecided.auto_confirm_at = NOW - timedelta(hours=1)

    db.commit()
    return due, later, confirmed, undecided


def test_sweep_confirms_only_due_rooms(db, rooms):
    due, later, confirmed, undecided = rooms

    assert auto_confirm_service.run_sweep(db, now=NOW) == 1

    db.expire_all()
    assert due.travel_mode_confirmed_at is not None
    assert later.travel_mode_confirmed_at is None
    assert undecided.travel_mode_confirmed_at is None


def test_sweep_is_idempotent(db, rooms):
    auto_confirm_service.run_sweep(db, now=NOW)
    assert auto_confirm_service.run_sweep(db, now=NOW) == 0


@pytest.mark.asyncio
async def test_internal_endpoint_requires_secret(client: AsyncClient):
    response = await client.post(
        "/internal/scheduled/auto-confirm", headers={"X-Internal-Secret": "wrong"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_internal_endpoint_runs_sweep(client: AsyncClient, db, make_user, make_room):
    room = make_room(make_user("owner"))
    room.travel_mode = "remote"
    room.auto_confirm_at = datetime.now(timezone.utc) - timedelta(minutes=5)
    db.commit()

    response = await client.post(
        "/internal/scheduled/auto-confirm", headers={"X-Internal-Secret": "test-internal-secret"}
    )
    assert response.status_code == 200
    assert response.json()["rooms_confirmed"] == 1
