# backend/app/api/v1/auth.py
from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.auth import get_current_member
from app.auth.context import context_from_member, issue_access_token
from app.core.errors import DUPLICATE_MEMBER, AuthenticationError, ConflictError
from app.core.roles import Role
from app.core.security import hash_password, verify_password
from app.db.session import get_db
from app.models.credential import Credential
from app.models.member import Member
from app.schemas.auth import ChangePasswordIn, LoginIn, MeOut, SignupIn, TokenOut
from app.services.audit import record_audit_event, request_meta
from app.services.credential_events import get_credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_password(member: Member, credential: Optional[Credential], password: str) -> tuple[bool, bool]:
    """
    Returns (ok, must_rotate). Until a provisioned member rotates their
    password the generated default is the only accepted secret.
    """
    if member.password_hash and verify_password(password, member.password_hash):
        return True, False

    if credential is not None and credential.is_active and not credential.password_changed and credential.default_password:
        if hmac.compare_digest(credential.default_password.encode("utf-8"), password.encode("utf-8")):
            return True, True

    return False, False


@router.post("/signup", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupIn, request: Request, db: AsyncSession = Depends(get_db)) -> TokenOut:
    """
    Self-service account. New accounts belong to no school and carry the
    plain "member" role; school roles only come from invitations or admins.
    """
    email = Member.normalize_email(str(payload.email))

    existing = (await db.execute(select(Member.id).where(Member.email == email))).first()
    if existing is not None:
        raise ConflictError("An account with this email already exists", code=DUPLICATE_MEMBER)

    member = Member(
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        role=Role.MEMBER.value,
        tenant_id=None,
        password_hash=hash_password(payload.password),
        is_active=True,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("An account with this email already exists", code=DUPLICATE_MEMBER)

    token = issue_access_token(member)
    member_id = member.id
    logger.info("member signed up", extra={"member_id": str(member_id)})

    await record_audit_event(
        db,
        actor_id=member_id,
        tenant_id=None,
        action="member.signed_up",
        target_type="member",
        target_id=member_id,
        meta=request_meta(request),
    )
    return TokenOut(access_token=token)


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, db: AsyncSession = Depends(get_db)) -> TokenOut:
    """
    Body: {"identifier": "<email or generated username>", "password": "..."}
    """
    identifier = payload.identifier.strip().lower()

    credential: Optional[Credential] = None
    if "@" in identifier:
        member = (await db.execute(select(Member).where(Member.email == identifier))).scalar_one_or_none()
        if member is not None:
            credential = await get_credential(db, member.id)
    else:
        credential = (
            await db.execute(select(Credential).where(Credential.username == identifier))
        ).scalar_one_or_none()
        member = await db.get(Member, credential.member_id) if credential is not None else None

    if member is None or not member.is_active:
        raise AuthenticationError("Invalid credentials", code="InvalidCredentials")
    # a deactivated login blocks every password, including a self-chosen one
    if credential is not None and not credential.is_active:
        raise AuthenticationError("Invalid credentials", code="InvalidCredentials")

    ok, must_rotate = _check_password(member, credential, payload.password)
    if not ok:
        raise AuthenticationError("Invalid credentials", code="InvalidCredentials")

    if credential is not None:
        credential.last_login_at = _utcnow()
    token = issue_access_token(member)
    await db.commit()

    return TokenOut(access_token=token, password_change_required=must_rotate)


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    credential = await get_credential(db, member.id)

    ok, _ = _check_password(member, credential, payload.current_password)
    if not ok:
        raise AuthenticationError("Current password is incorrect", code="InvalidCredentials")

    member.password_hash = hash_password(payload.new_password)
    if credential is not None:
        credential.password_changed = True
        credential.default_password = None

    member_id, tenant_id = member.id, member.tenant_id
    await db.commit()

    await record_audit_event(
        db,
        actor_id=member_id,
        tenant_id=tenant_id,
        action="credential.rotated",
        target_type="member",
        target_id=member_id,
        meta=request_meta(request),
    )
    return {"success": True}


@router.get("/me", response_model=MeOut)
async def me(
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
) -> MeOut:
    credential = await get_credential(db, member.id)
    ctx = context_from_member(member)
    return MeOut(
        id=member.id,
        email=member.email,
        first_name=member.first_name,
        last_name=member.last_name,
        phone=member.phone,
        role=member.role,
        tenant_id=member.tenant_id,
        is_active=member.is_active,
        is_super_admin=ctx.is_super_admin,
        username=credential.username if credential is not None else None,
    )
