# tests/test_credential_admin.py
from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from app.core.security import hash_password
from app.models.audit_log import AuditLogEntry
from app.models.credential import Credential
from app.models.member import Member

LOGIN = "/api/v1/auth/login"


async def credential_of(factory, member_id: uuid.UUID) -> Credential:
    return (await factory.all(select(Credential).where(Credential.member_id == member_id)))[0]


async def school_with_admin(factory):
    school = await factory.tenant()
    admin = await factory.member("head@greenfield.edu", tenant_id=school, role="admin")
    await factory.credential(admin.id, "adm.head")
    return school, admin


# =========================================================
# list
# =========================================================
@pytest.mark.asyncio
async def test_admin_lists_credentials_of_own_school_only(client, factory, auth_headers):
    school, admin = await school_with_admin(factory)
    kid = await factory.member("kid@greenfield.edu", tenant_id=school, role="student", first_name="Baraka", last_name="Mwangi")
    await factory.credential(kid.id, "stu.bmwangi", default_password="Initial2345")

    other = await factory.tenant(name="Riverside High")
    outsider = await factory.member("kid@riverside.edu", tenant_id=other, role="student")
    await factory.credential(outsider.id, "stu.outsider")

    r = await client.get("/api/v1/admin/credentials", headers=auth_headers(admin))
    assert r.status_code == 200, r.text
    rows = r.json()
    assert [c["username"] for c in rows] == ["adm.head", "stu.bmwangi"]
    kid_row = rows[1]
    assert kid_row["full_name"] == "Baraka Mwangi"
    assert kid_row["role"] == "student"
    assert kid_row["default_password"] == "Initial2345"
    assert kid_row["is_active"] is True

    r = await client.get(
        "/api/v1/admin/credentials", params={"school_id": str(other)}, headers=auth_headers(admin)
    )
    assert r.status_code == 403
    assert r.json()["code"] == "TenantMismatch"


@pytest.mark.asyncio
async def test_teacher_cannot_list_credentials(client, factory, auth_headers):
    school = await factory.tenant()
    teacher = await factory.member("t@greenfield.edu", tenant_id=school, role="teacher")

    r = await client.get("/api/v1/admin/credentials", headers=auth_headers(teacher))
    assert r.status_code == 403
    assert r.json()["code"] == "PermissionMissing"

    r = await client.get("/api/v1/admin/credentials")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_super_admin_must_name_the_school(client, factory, auth_headers):
    root = await factory.member("root@platform.io", role="admin")
    school = await factory.tenant()
    kid = await factory.member("kid@greenfield.edu", tenant_id=school, role="student")
    await factory.credential(kid.id, "stu.kid")

    r = await client.get("/api/v1/admin/credentials", headers=auth_headers(root))
    assert r.status_code == 400
    assert r.json()["fields"] == ["school_id"]

    r = await client.get("/api/v1/admin/credentials", params={"school_id": str(school)}, headers=auth_headers(root))
    assert r.status_code == 200
    assert [c["username"] for c in r.json()] == ["stu.kid"]


# =========================================================
# reset
# =========================================================
@pytest.mark.asyncio
async def test_reset_issues_new_default_and_discards_chosen_password(client, factory, auth_headers):
    school, admin = await school_with_admin(factory)
    kid = await factory.member(
        "kid@greenfield.edu", tenant_id=school, role="student", password_hash=hash_password("MyOwnSecret77")
    )
    await factory.credential(kid.id, "stu.kid")
    cred = await credential_of(factory, kid.id)

    r = await client.post(f"/api/v1/admin/credentials/{cred.id}/reset", headers=auth_headers(admin))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["username"] == "stu.kid"
    new_password = body["default_password"]
    assert len(new_password) == 12
    assert new_password != "Initial2345"

    stored = await credential_of(factory, kid.id)
    assert (stored.default_password, stored.password_changed) == (new_password, False)
    assert (await factory.get(Member, kid.id)).password_hash is None

    for old in ("Initial2345", "MyOwnSecret77"):
        r = await client.post(LOGIN, json={"identifier": "stu.kid", "password": old})
        assert r.status_code == 401

    r = await client.post(LOGIN, json={"identifier": "stu.kid", "password": new_password})
    assert r.status_code == 200
    assert r.json()["password_change_required"] is True

    audit = await factory.all(select(AuditLogEntry).where(AuditLogEntry.action == "credential.reset"))
    assert len(audit) == 1
    assert audit[0].tenant_id == school


@pytest.mark.asyncio
async def test_reset_unknown_credential(client, factory, auth_headers):
    _, admin = await school_with_admin(factory)

    r = await client.post(f"/api/v1/admin/credentials/{uuid.uuid4()}/reset", headers=auth_headers(admin))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_school_admin_cannot_touch_other_school_or_platform_logins(client, factory, auth_headers):
    _, admin = await school_with_admin(factory)

    other = await factory.tenant(name="Riverside High")
    outsider = await factory.member("kid@riverside.edu", tenant_id=other, role="student")
    await factory.credential(outsider.id, "stu.outsider")
    root = await factory.member("root@platform.io", role="admin")
    await factory.credential(root.id, "sa.root")

    for member_id in (outsider.id, root.id):
        cred = await credential_of(factory, member_id)
        r = await client.post(f"/api/v1/admin/credentials/{cred.id}/reset", headers=auth_headers(admin))
        assert r.status_code == 403
        assert r.json()["code"] == "TenantMismatch"

        r = await client.post(
            f"/api/v1/admin/credentials/{cred.id}/active", json={"is_active": False}, headers=auth_headers(admin)
        )
        assert r.status_code == 403

        stored = await credential_of(factory, member_id)
        assert (stored.default_password, stored.is_active) == ("Initial2345", True)


# =========================================================
# activate / deactivate
# =========================================================
@pytest.mark.asyncio
async def test_deactivated_credential_blocks_login_until_reactivated(client, factory, auth_headers):
    school, admin = await school_with_admin(factory)
    kid = await factory.member(
        "kid@greenfield.edu", tenant_id=school, role="student", password_hash=hash_password("MyOwnSecret77")
    )
    await factory.credential(kid.id, "stu.kid")
    cred = await credential_of(factory, kid.id)
    url = f"/api/v1/admin/credentials/{cred.id}/active"

    r = await client.post(url, json={"is_active": False}, headers=auth_headers(admin))
    assert r.status_code == 200, r.text
    assert r.json()["is_active"] is False

    # both the username and the email path are closed
    for identifier in ("stu.kid", "kid@greenfield.edu"):
        r = await client.post(LOGIN, json={"identifier": identifier, "password": "MyOwnSecret77"})
        assert r.status_code == 401

    r = await client.post(url, json={"is_active": True}, headers=auth_headers(admin))
    assert r.status_code == 200

    r = await client.post(LOGIN, json={"identifier": "stu.kid", "password": "MyOwnSecret77"})
    assert r.status_code == 200

    actions = sorted(a.action for a in await factory.all(select(AuditLogEntry)))
    assert actions == ["credential.activated", "credential.deactivated"]


@pytest.mark.asyncio
async def test_toggle_requires_a_boolean(client, factory, auth_headers):
    school, admin = await school_with_admin(factory)
    cred = await credential_of(factory, admin.id)

    r = await client.post(f"/api/v1/admin/credentials/{cred.id}/active", json={}, headers=auth_headers(admin))
    assert r.status_code == 400


# =========================================================
# backfill
# =========================================================
@pytest.mark.asyncio
async def test_backfill_issues_only_missing_credentials_once(client, factory, auth_headers):
    school, admin = await school_with_admin(factory)
    t1 = await factory.member("t1@greenfield.edu", tenant_id=school, role="teacher", first_name="Achieng", last_name="Odhiambo")
    t2 = await factory.member("t2@greenfield.edu", tenant_id=school, role="staff", first_name="Juma", last_name="Hassan")
    await factory.member("gone@greenfield.edu", tenant_id=school, role="teacher", is_active=False)
    has_one = await factory.member("kid@greenfield.edu", tenant_id=school, role="student")
    await factory.credential(has_one.id, "stu.kid")

    r = await client.post("/api/v1/admin/credentials/backfill", headers=auth_headers(admin))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["issued"] == 2
    issued = {c["user_id"]: c for c in body["credentials"]}
    assert set(issued) == {str(t1.id), str(t2.id)}
    assert issued[str(t1.id)]["username"] == "tch.aodhiambo"
    assert issued[str(t2.id)]["username"] == "stf.jhassan"
    assert all(len(c["default_password"]) == 12 for c in body["credentials"])

    assert (await credential_of(factory, has_one.id)).default_password == "Initial2345"

    audit = await factory.all(select(AuditLogEntry).where(AuditLogEntry.action == "credential.backfilled"))
    assert len(audit) == 1

    r = await client.post("/api/v1/admin/credentials/backfill", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json() == {"success": True, "issued": 0, "credentials": []}

    creds = await factory.all(select(Credential))
    assert len(creds) == 4


@pytest.mark.asyncio
async def test_teacher_cannot_backfill(client, factory, auth_headers):
    school = await factory.tenant()
    teacher = await factory.member("t@greenfield.edu", tenant_id=school, role="teacher")

    r = await client.post("/api/v1/admin/credentials/backfill", headers=auth_headers(teacher))
    assert r.status_code == 403
    assert await factory.all(select(Credential)) == []


# =========================================================
# platform administrators
# =========================================================
def super_admin_body(**overrides) -> dict:
    body = {
        "first_name": "Neema",
        "last_name": "Ops",
        "email": "neema@platform.io",
        "username": "Neema.Ops",
        "password": "LaunchDay2026",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_super_admin_creates_platform_admin(client, factory, auth_headers):
    root = await factory.member("root@platform.io", role="admin")

    r = await client.post("/api/v1/admin/super-admins", json=super_admin_body(), headers=auth_headers(root))
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["success"] is True
    assert body["username"] == "neema.ops"

    created = await factory.get(Member, uuid.UUID(body["user_id"]))
    assert (created.tenant_id, created.role, created.email) == (None, "admin", "neema@platform.io")

    r = await client.post(LOGIN, json={"identifier": "neema.ops", "password": "LaunchDay2026"})
    assert r.status_code == 200, r.text
    assert r.json()["password_change_required"] is True

    r = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"})
    assert r.json()["is_super_admin"] is True

    audit = await factory.all(select(AuditLogEntry).where(AuditLogEntry.action == "platform_admin.created"))
    assert len(audit) == 1
    assert audit[0].actor_id == root.id


@pytest.mark.asyncio
async def test_school_admin_cannot_create_platform_admin(client, factory, auth_headers):
    _, admin = await school_with_admin(factory)

    r = await client.post("/api/v1/admin/super-admins", json=super_admin_body(), headers=auth_headers(admin))
    assert r.status_code == 403
    assert r.json()["code"] == "PermissionMissing"
    assert await factory.all(select(Member).where(Member.email == "neema@platform.io")) == []


@pytest.mark.asyncio
async def test_platform_admin_username_and_email_are_unique(client, factory, auth_headers):
    root = await factory.member("root@platform.io", role="admin")
    await factory.credential(root.id, "neema.ops")

    r = await client.post("/api/v1/admin/super-admins", json=super_admin_body(), headers=auth_headers(root))
    assert r.status_code == 409
    assert r.json()["code"] == "UsernameTaken"
    assert r.json()["error"] == "Username already exists"

    r = await client.post(
        "/api/v1/admin/super-admins",
        json=super_admin_body(email="ROOT@platform.io", username="fresh.name"),
        headers=auth_headers(root),
    )
    assert r.status_code == 409
    assert r.json()["code"] == "DuplicateMember"

    assert len(await factory.all(select(Member))) == 1


@pytest.mark.asyncio
async def test_platform_admin_body_is_validated(client, factory, auth_headers):
    root = await factory.member("root@platform.io", role="admin")

    r = await client.post(
        "/api/v1/admin/super-admins",
        json=super_admin_body(username="bad name!", password="short"),
        headers=auth_headers(root),
    )
    assert r.status_code == 400
    assert set(r.json()["fields"]) >= {"username", "password"}
