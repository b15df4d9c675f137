# tests/test_auth_context.py
from __future__ import annotations

import uuid

import pytest

from app.auth.context import (
    context_from_member,
    issue_access_token,
    resolve_auth_context,
    verify_against_store,
)
from app.core.security import create_access_token


def test_missing_or_garbage_token_is_anonymous():
    for token in (None, "", "not-a-jwt", "Bearer abc.def.ghi"):
        ctx = resolve_auth_context(token)
        assert ctx.is_authenticated is False
        assert ctx.identity is None


def test_expired_token_is_anonymous():
    token = create_access_token(str(uuid.uuid4()), claims={"role": "admin"}, expires_minutes=-5)
    assert resolve_auth_context(token).is_authenticated is False


@pytest.mark.parametrize(
    "sub, claims",
    [
        ("not-a-uuid", {"role": "admin"}),
        (str(uuid.uuid4()), {"tenant_id": "nope", "role": "admin"}),
        (str(uuid.uuid4()), {"role": "janitor"}),
    ],
)
def test_malformed_claims_are_anonymous(sub, claims):
    assert resolve_auth_context(create_access_token(sub, claims=claims)).is_authenticated is False


def test_valid_claims_build_context():
    member_id, school = uuid.uuid4(), uuid.uuid4()
    token = create_access_token(
        str(member_id),
        claims={"email": "Head@Greenfield.edu", "tenant_id": str(school), "role": "admin"},
    )
    ctx = resolve_auth_context(f"  Bearer {token}\n")
    assert ctx.is_authenticated
    assert ctx.identity == member_id
    assert ctx.tenant_id == school
    assert ctx.email == "head@greenfield.edu"
    assert ctx.is_super_admin is False
    assert "member.*" in ctx.permissions


def test_admin_without_tenant_is_super_admin():
    token = create_access_token(str(uuid.uuid4()), claims={"tenant_id": None, "role": "admin"})
    assert resolve_auth_context(token).is_super_admin is True


@pytest.mark.asyncio
async def test_store_overrides_stale_claims(factory, db):
    school_a = await factory.tenant(name="School A")
    school_b = await factory.tenant(name="School B")
    m = await factory.member("moved@greenfield.edu", tenant_id=school_b, role="teacher")

    # token minted while the member was still an admin of school A
    stale = create_access_token(str(m.id), claims={"email": m.email, "tenant_id": str(school_a), "role": "admin"})
    claimed = resolve_auth_context(stale)
    assert claimed.tenant_id == school_a

    verified = await verify_against_store(db, claimed)
    await db.rollback()
    assert verified.tenant_id == school_b
    assert verified.role == "teacher"


@pytest.mark.asyncio
async def test_inactive_member_verifies_as_anonymous(factory, db):
    m = await factory.member("gone@greenfield.edu", role="admin", is_active=False)
    verified = await verify_against_store(db, resolve_auth_context(issue_access_token(m)))
    await db.rollback()
    assert verified.is_authenticated is False
    assert context_from_member(None).is_authenticated is False
