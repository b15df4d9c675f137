"""
School-admin management of generated logins: list, reset, (de)activate and
backfill credentials for members that were created without one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import AuthContext, verify_against_store
from app.auth.permissions import Resource, authorize, ensure_allowed
from app.core.credentials import generate_default_password
from app.core.errors import (
    AppError,
    AuthenticationError,
    AuthorizationError,
    DenyReason,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.models.credential import Credential
from app.models.member import Member
from app.services.audit import NO_REQUEST, RequestMeta, record_audit_event
from app.services.credential_events import IssuedCredential, MemberInserted, on_member_inserted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialView:
    id: uuid.UUID
    member_id: uuid.UUID
    full_name: str
    role: str
    username: str
    # only while the member has not rotated it
    default_password: Optional[str]
    password_changed: bool
    is_active: bool
    last_login_at: Optional[datetime]


@dataclass(frozen=True)
class ResetCredential:
    id: uuid.UUID
    username: str
    default_password: str


def _target_tenant(verified: AuthContext, school_id: Optional[uuid.UUID]) -> uuid.UUID:
    if not verified.is_authenticated:
        raise AuthenticationError("Authentication required")
    target = school_id or verified.tenant_id
    if target is None:
        raise ValidationError("school_id is required", fields=["school_id"])
    return target


async def _load(db: AsyncSession, credential_id: uuid.UUID) -> tuple[Credential, Member]:
    row = (
        await db.execute(
            select(Credential, Member)
            .join(Member, Member.id == Credential.member_id)
            .where(Credential.id == credential_id)
        )
    ).first()
    if row is None:
        raise NotFoundError("Credential not found")
    return row[0], row[1]


def _authorize_on(verified: AuthContext, action: str, member: Member, message: str) -> None:
    # platform logins belong to no school; only a super-admin may touch them
    if member.tenant_id is None and not verified.is_super_admin:
        raise AuthorizationError(message, reason=DenyReason.TENANT_MISMATCH)
    ensure_allowed(authorize(verified, action, Resource(type="credential", tenant_id=member.tenant_id)), message)


async def list_credentials(
    db: AsyncSession, context: AuthContext, school_id: Optional[uuid.UUID] = None
) -> list[CredentialView]:
    """Credentials of one school, ordered by username."""
    try:
        verified = await verify_against_store(db, context)
        tenant_id = _target_tenant(verified, school_id)
        ensure_allowed(
            authorize(verified, "list", Resource(type="credential", tenant_id=tenant_id)),
            "You are not allowed to view credentials of this school",
        )
    except AppError:
        await db.rollback()
        raise

    rows = (
        await db.execute(
            select(Credential, Member)
            .join(Member, Member.id == Credential.member_id)
            .where(Member.tenant_id == tenant_id)
            .order_by(Credential.username)
        )
    ).all()

    return [
        CredentialView(
            id=cred.id,
            member_id=member.id,
            full_name=member.full_name,
            role=member.role,
            username=cred.username,
            default_password=None if cred.password_changed else cred.default_password,
            password_changed=cred.password_changed,
            is_active=cred.is_active,
            last_login_at=cred.last_login_at,
        )
        for cred, member in rows
    ]


async def reset_default_password(
    db: AsyncSession,
    context: AuthContext,
    credential_id: uuid.UUID,
    *,
    meta: RequestMeta = NO_REQUEST,
) -> ResetCredential:
    """
    Issue a fresh default password. Any password the member chose is
    discarded, so the new default is the only secret that logs in.
    """
    try:
        verified = await verify_against_store(db, context)
        cred, member = await _load(db, credential_id)
        _authorize_on(verified, "reset", member, "You are not allowed to reset this credential")
    except AppError:
        await db.rollback()
        raise

    password = generate_default_password()
    cred.default_password = password
    cred.password_changed = False
    member.password_hash = None
    reset = ResetCredential(id=cred.id, username=cred.username, default_password=password)
    tenant_id, member_id = member.tenant_id, member.id
    await db.commit()

    logger.info("default password reset", extra={"credential_id": str(reset.id), "member_id": str(member_id)})
    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=tenant_id,
        action="credential.reset",
        target_type="credential",
        target_id=reset.id,
        details={"username": reset.username},
        meta=meta,
    )
    return reset


async def set_credential_active(
    db: AsyncSession,
    context: AuthContext,
    credential_id: uuid.UUID,
    is_active: bool,
    *,
    meta: RequestMeta = NO_REQUEST,
) -> uuid.UUID:
    try:
        verified = await verify_against_store(db, context)
        cred, member = await _load(db, credential_id)
        _authorize_on(verified, "update", member, "You are not allowed to change this credential")
    except AppError:
        await db.rollback()
        raise

    cred.is_active = is_active
    tenant_id = member.tenant_id
    await db.commit()

    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=tenant_id,
        action="credential.activated" if is_active else "credential.deactivated",
        target_type="credential",
        target_id=credential_id,
        meta=meta,
    )
    return credential_id


async def backfill_credentials(
    db: AsyncSession,
    context: AuthContext,
    school_id: Optional[uuid.UUID] = None,
    *,
    meta: RequestMeta = NO_REQUEST,
) -> list[IssuedCredential]:
    """
    Issue credentials to every active member of the school that has none,
    through the same consumer provisioning uses. Returns what was issued.
    """
    try:
        verified = await verify_against_store(db, context)
        tenant_id = _target_tenant(verified, school_id)
        ensure_allowed(
            authorize(verified, "create", Resource(type="credential", tenant_id=tenant_id)),
            "You are not allowed to create credentials in this school",
        )
    except AppError:
        await db.rollback()
        raise

    has_credential = select(Credential.member_id)
    members = (
        await db.execute(
            select(Member)
            .where(
                Member.tenant_id == tenant_id,
                Member.is_active.is_(True),
                Member.id.not_in(has_credential),
            )
            .order_by(Member.created_at)
        )
    ).scalars().all()
    pending = [
        MemberInserted(
            member_id=m.id,
            tenant_id=m.tenant_id,
            first_name=m.first_name,
            last_name=m.last_name,
            role=m.role,
        )
        for m in members
    ]

    issued: list[IssuedCredential] = []
    for event in pending:
        try:
            result = await on_member_inserted(db, event)
        except (SQLAlchemyError, RuntimeError):
            await db.rollback()
            logger.exception("credential backfill failed", extra={"member_id": str(event.member_id)})
            raise UpstreamError(
                "Failed to create login credentials",
                step="credentials",
                user_id=str(event.member_id),
                issued=len(issued),
            )
        if result.created:
            issued.append(result)

    logger.info("credentials backfilled", extra={"tenant": str(tenant_id), "count": len(issued)})
    if issued:
        await record_audit_event(
            db,
            actor_id=verified.identity,
            tenant_id=tenant_id,
            action="credential.backfilled",
            target_type="organization",
            target_id=tenant_id,
            details={"count": len(issued)},
            meta=meta,
        )
    return issued
