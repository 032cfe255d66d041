# tests/test_auth.py
from __future__ import annotations

import pytest

from conftest import auth_headers


async def request_code(client, email):
    r = await client.post("/api/v1/auth/request-code", json={"email": email})
    assert r.status_code == 200
    return r.json()["code"]


@pytest.mark.asyncio
async def test_magic_code_login_creates_user(client):
    code = await request_code(client, "New.User@Example.com")

    r = await client.post("/api/v1/auth/verify-code", json={"email": "new.user@example.com", "code": code})
    assert r.status_code == 200
    token = r.json()["access_token"]

    r = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["email"] == "new.user@example.com"
    assert r.json()["is_super_admin"] is False


@pytest.mark.asyncio
async def test_code_is_single_use(client):
    code = await request_code(client, "once@example.com")
    payload = {"email": "once@example.com", "code": code}

    assert (await client.post("/api/v1/auth/verify-code", json=payload)).status_code == 200
    assert (await client.post("/api/v1/auth/verify-code", json=payload)).status_code == 401


@pytest.mark.asyncio
async def test_wrong_code_is_rejected(client):
    await request_code(client, "guess@example.com")

    # issued codes are six digits from 100000
    r = await client.post("/api/v1/auth/verify-code", json={"email": "guess@example.com", "code": "000000"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_update_profile_normalizes_name(client, owner):
    r = await client.patch("/api/v1/auth/me", json={"full_name": "  Ada    Lovelace "}, headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["full_name"] == "Ada Lovelace"

    r = await client.patch("/api/v1/auth/me", json={}, headers=auth_headers(owner))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_garbage_bearer_token(client):
    r = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
