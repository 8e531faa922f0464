"""Tests for session tokens and the request guards built on them."""
import uuid

import jwt
import pytest
from httpx import AsyncClient

from coordination.core.config import settings
from coordination.core.deps import COOKIE_NAME
from coordination.core.security import create_session_token, decode_session_token


def test_session_token_roundtrip():
    user_id = uuid.uuid4()
    payload = decode_session_token(create_session_token(user_id, token_version=3))

    assert payload["sub"] == str(user_id)
    assert payload["token_version"] == 3


def test_previous_secret_still_accepted(monkeypatch):
    token = create_session_token(uuid.uuid4(), token_version=1)
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", settings.JWT_SECRET)
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

    assert decode_session_token(token)["token_version"] == 1


def test_unknown_secret_rejected():
    token = jwt.encode({"sub": "x"}, "someone-else", algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        decode_session_token(token)


@pytest.mark.asyncio
async def test_revoked_session_is_rejected(client: AsyncClient, db, make_user, make_room):
    user = make_user("alice")
    room = make_room(user)
    token = create_session_token(user.id, token_version=user.token_version)
    user.token_version += 1
    db.commit()

    client.cookies.set(COOKIE_NAME, token)
    response = await client.get(f"/rooms/{room.id}/negotiations")
    assert response.status_code == 401
    assert response.json()["detail"] == "Session revoked"


@pytest.mark.asyncio
async def test_garbage_cookie_is_rejected(client: AsyncClient, db, make_user, make_room):
    room = make_room(make_user("alice"))
    client.cookies.set(COOKIE_NAME, "not-a-jwt")
    response = await client.get(f"/rooms/{room.id}/negotiations")
    assert response.status_code == 401
