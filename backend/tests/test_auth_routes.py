# tests/test_auth_routes.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from app.core.security import hash_password
from app.models.credential import Credential
from app.models.member import Member


@pytest.mark.asyncio
async def test_signup_creates_schoolless_member(client, factory):
    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "Amina.Otieno@Example.com", "password": "CorrectHorse9", "first_name": "Amina"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["token_type"] == "bearer"

    members = await factory.all(select(Member))
    assert len(members) == 1
    assert members[0].email == "amina.otieno@example.com"
    assert (members[0].tenant_id, members[0].role) == (None, "member")

    r = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"})
    assert r.status_code == 200
    me = r.json()
    assert me["email"] == "amina.otieno@example.com"
    assert me["tenant_id"] is None
    assert me["is_super_admin"] is False
    assert me["username"] is None


@pytest.mark.asyncio
async def test_signup_duplicate_email(client, factory):
    await factory.member("amina@example.com")

    r = await client.post("/api/v1/auth/signup", json={"email": "AMINA@example.com", "password": "CorrectHorse9"})
    assert r.status_code == 409
    assert r.json()["code"] == "DuplicateMember"


@pytest.mark.asyncio
async def test_login_with_email_and_password(client, factory):
    await factory.member("amina@example.com", password_hash=hash_password("CorrectHorse9"))

    r = await client.post("/api/v1/auth/login", json={"identifier": "Amina@Example.com", "password": "CorrectHorse9"})
    assert r.status_code == 200, r.text
    assert r.json()["password_change_required"] is False

    r = await client.post("/api/v1/auth/login", json={"identifier": "amina@example.com", "password": "wrong-pass"})
    assert r.status_code == 401
    assert r.json()["code"] == "InvalidCredentials"


@pytest.mark.asyncio
async def test_inactive_member_cannot_login(client, factory):
    await factory.member("gone@example.com", password_hash=hash_password("CorrectHorse9"), is_active=False)

    r = await client.post("/api/v1/auth/login", json={"identifier": "gone@example.com", "password": "CorrectHorse9"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_provisioned_member_logs_in_with_username_then_rotates(client, factory):
    school = await factory.tenant()
    student = await factory.member("kid@greenfield.edu", tenant_id=school, role="student")
    await factory.credential(student.id, "stu.kid", default_password="Initial2345")

    r = await client.post("/api/v1/auth/login", json={"identifier": "stu.kid", "password": "Initial2345"})
    assert r.status_code == 200, r.text
    assert r.json()["password_change_required"] is True
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    cred = (await factory.all(select(Credential).where(Credential.member_id == student.id)))[0]
    assert cred.last_login_at is not None

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "Initial2345", "new_password": "MyOwnSecret77"},
        headers=headers,
    )
    assert r.status_code == 200, r.text

    cred = (await factory.all(select(Credential).where(Credential.member_id == student.id)))[0]
    assert cred.password_changed is True
    assert cred.default_password is None

    r = await client.post("/api/v1/auth/login", json={"identifier": "stu.kid", "password": "Initial2345"})
    assert r.status_code == 401

    r = await client.post("/api/v1/auth/login", json={"identifier": "stu.kid", "password": "MyOwnSecret77"})
    assert r.status_code == 200
    assert r.json()["password_change_required"] is False


@pytest.mark.asyncio
async def test_change_password_requires_current_password(client, factory, auth_headers):
    member = await factory.member("amina@example.com", password_hash=hash_password("CorrectHorse9"))

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "not-it", "new_password": "MyOwnSecret77"},
        headers=auth_headers(member),
    )
    assert r.status_code == 401

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "CorrectHorse9", "new_password": "MyOwnSecret77"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_reports_role_and_username(client, factory, auth_headers):
    school = await factory.tenant()
    teacher = await factory.member("t@greenfield.edu", tenant_id=school, role="teacher")
    await factory.credential(teacher.id, "tch.t")

    r = await client.get("/api/v1/auth/me", headers=auth_headers(teacher))
    assert r.status_code == 200
    me = r.json()
    assert me["role"] == "teacher"
    assert me["tenant_id"] == str(school)
    assert me["username"] == "tch.t"

    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
