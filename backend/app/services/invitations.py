"""
Invitation lifecycle.

    pending --accept--> accepted
    pending --revoke--> revoked
    pending --(now >= expires_at, observed lazily)--> expired

Terminal states never change. Every transition out of ``pending`` is a
conditional UPDATE (``... WHERE status = 'pending'``) whose rowcount decides
the winner, so two concurrent accepts of one token cannot both succeed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import AuthContext, verify_against_store
from app.auth.permissions import Resource, authorize, ensure_allowed
from app.core.config import settings
from app.core.credentials import generate_invitation_token
from app.core.errors import (
    ALREADY_MEMBER,
    DUPLICATE_MEMBER,
    DUPLICATE_PENDING_INVITE,
    EMAIL_MISMATCH,
    INVALID_OR_EXPIRED_TOKEN,
    INVITATION_EXPIRED,
    AppError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from app.core.roles import INVITABLE_ROLES, normalize_role
from app.db.session import ensure_aware
from app.models.invitation import (
    INVITATION_ACCEPTED,
    INVITATION_EXPIRED as STATUS_EXPIRED,
    INVITATION_PENDING,
    INVITATION_REVOKED,
    Invitation,
)
from app.models.member import Member
from app.models.tenant import Tenant
from app.services.audit import NO_REQUEST, RequestMeta, record_audit_event

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class OrganizationRef:
    id: uuid.UUID
    name: str
    slug: str

    @classmethod
    def of(cls, tenant: Tenant) -> "OrganizationRef":
        return cls(id=tenant.id, name=tenant.name, slug=tenant.slug)

    def as_dict(self) -> dict:
        return {"id": str(self.id), "name": self.name, "slug": self.slug}


@dataclass(frozen=True)
class CreatedInvitation:
    id: uuid.UUID
    email: str
    role: str
    token: str
    expires_at: datetime
    organization: OrganizationRef


@dataclass(frozen=True)
class InvitationAccepted:
    organization: OrganizationRef
    role: str
    member_id: uuid.UUID


@dataclass(frozen=True)
class RequiresSignup:
    """The invitation is valid but the caller has no account yet."""

    email: str
    role: str
    organization: OrganizationRef


# =========================================================
# CREATE
# =========================================================
async def _expire_stale_pending(db: AsyncSession, *, tenant_id: uuid.UUID, email: str, now: datetime) -> int:
    result = await db.execute(
        update(Invitation)
        .where(
            Invitation.tenant_id == tenant_id,
            Invitation.email == email,
            Invitation.status == INVITATION_PENDING,
            Invitation.expires_at <= now,
        )
        .values(status=STATUS_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def create_invitation(
    db: AsyncSession,
    inviter: AuthContext,
    *,
    email: str,
    role: str,
    tenant_id: uuid.UUID,
    now: Optional[datetime] = None,
    meta: RequestMeta = NO_REQUEST,
) -> CreatedInvitation:
    now = now or _utcnow()
    email = _normalize_email(email)
    role = normalize_role(role)

    if "@" not in email:
        raise ValidationError("Invalid email", fields=["email"])
    if role not in INVITABLE_ROLES:
        raise ValidationError(
            f"Invalid role. Allowed: {', '.join(sorted(INVITABLE_ROLES))}",
            fields=["roleSlug"],
        )

    try:
        verified = await verify_against_store(db, inviter)
        ensure_allowed(
            authorize(verified, "invite", Resource(type="member", tenant_id=tenant_id)),
            "You are not allowed to invite members to this organization",
        )

        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Organization not found")
        org = OrganizationRef.of(tenant)

        existing = (await db.execute(select(Member).where(Member.email == email))).scalar_one_or_none()
        if existing is not None and existing.tenant_id == tenant_id:
            raise ConflictError("User is already a member of this organization", code=DUPLICATE_MEMBER)

        expired = await _expire_stale_pending(db, tenant_id=tenant_id, email=email, now=now)
        if expired:
            logger.info("expired stale invitations", extra={"count": expired, "invitee": email})

        pending = (
            await db.execute(
                select(Invitation.id).where(
                    Invitation.tenant_id == tenant_id,
                    Invitation.email == email,
                    Invitation.status == INVITATION_PENDING,
                )
            )
        ).first()
        if pending is not None:
            raise ConflictError(
                "A pending invitation already exists for this email",
                code=DUPLICATE_PENDING_INVITE,
            )

        invitation = Invitation(
            tenant_id=tenant_id,
            email=email,
            role=role,
            token=generate_invitation_token(),
            status=INVITATION_PENDING,
            expires_at=now + timedelta(days=settings.INVITE_EXPIRY_DAYS),
            created_by=verified.identity,
        )
        db.add(invitation)
        try:
            await db.commit()
        except IntegrityError:
            # partial unique index: someone created the same pending invite first
            await db.rollback()
            raise ConflictError(
                "A pending invitation already exists for this email",
                code=DUPLICATE_PENDING_INVITE,
            )
    except AppError:
        await db.rollback()
        raise

    created = CreatedInvitation(
        id=invitation.id,
        email=email,
        role=role,
        token=invitation.token,
        expires_at=invitation.expires_at,
        organization=org,
    )

    logger.info("invitation created", extra={"invitation_id": str(created.id), "invitee": email, "role": role})
    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=tenant_id,
        action="member.invited",
        target_type="invitation",
        target_id=created.id,
        details={"email": email, "role": role},
        meta=meta,
    )
    return created


# =========================================================
# ACCEPT
# =========================================================
async def _accept(
    db: AsyncSession,
    token: str,
    caller_identity: Optional[uuid.UUID],
    caller_email: Optional[str],
    now: datetime,
) -> InvitationAccepted | RequiresSignup:
    inv = (
        await db.execute(select(Invitation).where(Invitation.token == token).with_for_update())
    ).scalar_one_or_none()

    if inv is None or inv.status in (INVITATION_ACCEPTED, INVITATION_REVOKED):
        raise NotFoundError("Invalid or expired invitation", code=INVALID_OR_EXPIRED_TOKEN)

    if inv.status == STATUS_EXPIRED:
        raise ExpiredError("This invitation has expired", code=INVITATION_EXPIRED)

    invitation_id = inv.id
    if now >= ensure_aware(inv.expires_at):
        await db.execute(
            update(Invitation)
            .where(Invitation.id == invitation_id, Invitation.status == INVITATION_PENDING)
            .values(status=STATUS_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("invitation expired on access", extra={"invitation_id": str(invitation_id)})
        raise ExpiredError("This invitation has expired", code=INVITATION_EXPIRED)

    tenant = await db.get(Tenant, inv.tenant_id)
    if tenant is None:
        raise NotFoundError("Invalid or expired invitation", code=INVALID_OR_EXPIRED_TOKEN)
    org = OrganizationRef.of(tenant)
    invited_email = inv.email
    invited_role = inv.role

    member: Optional[Member] = None
    if caller_identity is not None:
        member = await db.get(Member, caller_identity)
        if member is None or not member.is_active:
            raise AuthenticationError("Account not found or inactive")
        email = member.email
    else:
        email = _normalize_email(caller_email)

    # a missing email never matches
    if email != invited_email:
        raise AuthorizationError(
            "This invitation was sent to a different email address",
            code=EMAIL_MISMATCH,
        )

    if member is None:
        return RequiresSignup(email=invited_email, role=invited_role, organization=org)

    if member.tenant_id == inv.tenant_id:
        raise ConflictError("You are already a member of this organization", code=ALREADY_MEMBER)

    result = await db.execute(
        update(Invitation)
        .where(Invitation.id == invitation_id, Invitation.status == INVITATION_PENDING)
        .values(status=INVITATION_ACCEPTED, accepted_by=member.id, accepted_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # lost the race to a concurrent accept/revoke
        raise NotFoundError("Invalid or expired invitation", code=INVALID_OR_EXPIRED_TOKEN)

    previous_tenant = member.tenant_id
    member.tenant_id = inv.tenant_id
    member.role = invited_role
    member_id = member.id
    await db.commit()

    logger.info(
        "invitation accepted",
        extra={
            "invitation_id": str(invitation_id),
            "member_id": str(member_id),
            "previous_tenant": str(previous_tenant) if previous_tenant else None,
        },
    )
    return InvitationAccepted(organization=org, role=invited_role, member_id=member_id)


async def accept_invitation(
    db: AsyncSession,
    token: Optional[str],
    *,
    caller_identity: Optional[uuid.UUID] = None,
    caller_email: Optional[str] = None,
    now: Optional[datetime] = None,
    meta: RequestMeta = NO_REQUEST,
) -> InvitationAccepted | RequiresSignup:
    """
    caller_identity is the authenticated member, or None for an anonymous
    caller. For an authenticated caller the email on their Member row is
    matched against the invitation; caller_email is only consulted for
    anonymous callers.
    """
    now = now or _utcnow()
    token = (token or "").strip()
    if not token:
        raise NotFoundError("Invalid or expired invitation", code=INVALID_OR_EXPIRED_TOKEN)

    try:
        outcome = await _accept(db, token, caller_identity, caller_email, now)
    except AppError:
        await db.rollback()
        raise

    if isinstance(outcome, RequiresSignup):
        # release the row lock; nothing was written
        await db.rollback()
        return outcome

    await record_audit_event(
        db,
        actor_id=outcome.member_id,
        tenant_id=outcome.organization.id,
        action="member.joined",
        target_type="member",
        target_id=outcome.member_id,
        details={"role": outcome.role, "via": "invitation"},
        meta=meta,
    )
    return outcome


# =========================================================
# REVOKE + LIST
# =========================================================
async def revoke_invitation(
    db: AsyncSession,
    context: AuthContext,
    invitation_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
    meta: RequestMeta = NO_REQUEST,
) -> uuid.UUID:
    now = now or _utcnow()
    try:
        verified = await verify_against_store(db, context)
        if not verified.is_authenticated:
            raise AuthenticationError("Authentication required")

        inv = await db.get(Invitation, invitation_id)
        if inv is None:
            raise NotFoundError("Invitation not found")
        tenant_id = inv.tenant_id

        ensure_allowed(
            authorize(verified, "revoke", Resource(type="invitation", tenant_id=tenant_id)),
            "You are not allowed to revoke this invitation",
        )

        result = await db.execute(
            update(Invitation)
            .where(Invitation.id == invitation_id, Invitation.status == INVITATION_PENDING)
            .values(status=INVITATION_REVOKED, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Only pending invitations can be revoked", code="InvitationNotPending")
        await db.commit()
    except AppError:
        await db.rollback()
        raise

    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=tenant_id,
        action="member.invite_revoked",
        target_type="invitation",
        target_id=invitation_id,
        meta=meta,
    )
    return invitation_id


async def list_invitations(
    db: AsyncSession,
    context: AuthContext,
    tenant_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> list[Invitation]:
    """Invitations of one tenant, newest first. Stale pending rows are expired first."""
    now = now or _utcnow()
    try:
        verified = await verify_against_store(db, context)
        # "list", not "read": same-tenant read access must not expose the invite list
        ensure_allowed(
            authorize(verified, "list", Resource(type="invitation", tenant_id=tenant_id)),
            "You are not allowed to view invitations of this organization",
        )
    except AppError:
        await db.rollback()
        raise

    await db.execute(
        update(Invitation)
        .where(
            Invitation.tenant_id == tenant_id,
            Invitation.status == INVITATION_PENDING,
            Invitation.expires_at <= now,
        )
        .values(status=STATUS_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    stmt = (
        select(Invitation)
        .where(Invitation.tenant_id == tenant_id)
        .order_by(Invitation.created_at.desc())
    )
    invitations = (await db.execute(stmt)).scalars().all()
    await db.commit()
    return list(invitations)
