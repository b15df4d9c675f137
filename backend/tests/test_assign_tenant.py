# tests/test_assign_tenant.py
from __future__ import annotations

import os
import uuid

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.models.audit_log import AuditLogEntry
from app.models.member import Member

URL = "/api/assignTenant"


def secret_headers() -> dict:
    return {"x-assign-tenant-secret": os.environ["ASSIGN_TENANT_SECRET"]}


@pytest.mark.asyncio
async def test_preflight_returns_cors_headers(client):
    r = await client.options(URL)
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert "x-assign-tenant-secret" in r.headers["access-control-allow-headers"]


@pytest.mark.asyncio
async def test_assigns_tenant_and_role(client, factory):
    school = await factory.tenant(name="Riverside High")
    member = await factory.member("new.teacher@riverside.edu")

    r = await client.post(
        URL,
        json={"userId": str(member.id), "tenantId": str(school), "role": "teacher"},
        headers=secret_headers(),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "Tenant and role assigned successfully"
    assert body["data"] == {
        "userId": str(member.id),
        "tenantId": str(school),
        "role": "teacher",
        "schoolName": "Riverside High",
    }
    assert body["duration"].endswith("ms")

    stored = await factory.get(Member, member.id)
    assert (stored.tenant_id, stored.role) == (school, "teacher")

    audit = await factory.all(select(AuditLogEntry).where(AuditLogEntry.action == "member.tenant_assigned"))
    assert len(audit) == 1
    assert audit[0].target_id == str(member.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"x-assign-tenant-secret": "wrong"}])
async def test_rejects_missing_or_wrong_secret(client, factory, headers):
    school = await factory.tenant()
    member = await factory.member("someone@riverside.edu")

    r = await client.post(
        URL,
        json={"userId": str(member.id), "tenantId": str(school), "role": "teacher"},
        headers=headers,
    )
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"

    stored = await factory.get(Member, member.id)
    assert stored.tenant_id is None


@pytest.mark.asyncio
async def test_unconfigured_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "ASSIGN_TENANT_SECRET", None)

    r = await client.post(URL, json={}, headers=secret_headers())
    assert r.status_code == 500
    assert r.json()["error"] == "Server configuration error"


@pytest.mark.asyncio
async def test_missing_fields(client):
    r = await client.post(URL, json={"userId": str(uuid.uuid4())}, headers=secret_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields: userId, tenantId, role"


@pytest.mark.asyncio
async def test_owner_role_is_not_assignable(client):
    r = await client.post(
        URL,
        json={"userId": str(uuid.uuid4()), "tenantId": str(uuid.uuid4()), "role": "owner"},
        headers=secret_headers(),
    )
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid role")


@pytest.mark.asyncio
async def test_invalid_uuid(client):
    r = await client.post(
        URL,
        json={"userId": "not-a-uuid", "tenantId": str(uuid.uuid4()), "role": "student"},
        headers=secret_headers(),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid UUID format for userId or tenantId"


@pytest.mark.asyncio
async def test_unknown_user_and_tenant(client, factory):
    school = await factory.tenant()
    member = await factory.member("someone@riverside.edu")

    r = await client.post(
        URL,
        json={"userId": str(uuid.uuid4()), "tenantId": str(school), "role": "staff"},
        headers=secret_headers(),
    )
    assert r.status_code == 404
    assert r.json()["error"] == "User not found"

    r = await client.post(
        URL,
        json={"userId": str(member.id), "tenantId": str(uuid.uuid4()), "role": "staff"},
        headers=secret_headers(),
    )
    assert r.status_code == 404
    assert r.json()["error"] == "Tenant/School not found"


@pytest.mark.asyncio
async def test_error_responses_keep_cors_headers(client):
    r = await client.post(URL, json={"userId": "x"}, headers={"x-assign-tenant-secret": "wrong"})
    assert r.status_code == 401
    assert r.headers["access-control-allow-origin"] == "*"
    assert r.headers["access-control-allow-methods"] == "POST, OPTIONS"

    r = await client.post(URL, json={}, headers=secret_headers())
    assert r.status_code == 400
    assert r.headers["access-control-allow-methods"] == "POST, OPTIONS"


@pytest.mark.asyncio
async def test_secret_is_checked_before_the_body(client):
    body = b"{not json"
    json_type = {"content-type": "application/json"}

    r = await client.post(URL, content=body, headers=json_type)
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"

    r = await client.post(URL, content=body, headers={**json_type, **secret_headers()})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid JSON body"
