"""
Auth context resolution.

The bearer token's claims are advisory: they say who the caller claims to be
at the time the token was minted. Privileged operations rebuild the context
from the durable Member row (context_from_member) before authorizing.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional

from app.auth.permissions import effective_permissions
from app.core.roles import ALL_ROLES, Role, normalize_role
from app.core.security import create_access_token, decode_token_claims
from app.models.member import Member

logger = logging.getLogger(__name__)

SUPER_ADMIN_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})


@dataclass(frozen=True)
class AuthContext:
    identity: Optional[uuid.UUID] = None
    email: Optional[str] = None
    tenant_id: Optional[uuid.UUID] = None
    role: Optional[str] = None
    is_super_admin: bool = False
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    is_authenticated: bool = False


ANONYMOUS = AuthContext()


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def build_context(
    *,
    identity: uuid.UUID,
    email: Optional[str],
    tenant_id: Optional[uuid.UUID],
    role: Optional[str],
) -> AuthContext:
    r = normalize_role(role) or Role.MEMBER.value
    return AuthContext(
        identity=identity,
        email=(email or "").strip().lower() or None,
        tenant_id=tenant_id,
        role=r,
        is_super_admin=tenant_id is None and r in SUPER_ADMIN_ROLES,
        permissions=effective_permissions(r),
        is_authenticated=True,
    )


def resolve_auth_context(token: Optional[str]) -> AuthContext:
    """
    Never raises. Missing, expired, forged or malformed tokens all resolve to
    the anonymous context.
    """
    claims = decode_token_claims(token)
    if not claims:
        return ANONYMOUS

    identity = _parse_uuid(claims.get("sub"))
    if identity is None:
        return ANONYMOUS

    raw_tenant = claims.get("tenant_id")
    tenant_id = None
    if raw_tenant not in (None, ""):
        tenant_id = _parse_uuid(raw_tenant)
        if tenant_id is None:
            return ANONYMOUS

    role = claims.get("role")
    if role is not None and (not isinstance(role, str) or normalize_role(role) not in ALL_ROLES):
        return ANONYMOUS

    email = claims.get("email")
    if email is not None and not isinstance(email, str):
        return ANONYMOUS

    return build_context(identity=identity, email=email, tenant_id=tenant_id, role=role)


def context_from_member(member) -> AuthContext:
    """Verified context from a Member row. Inactive members are anonymous."""
    if member is None or not member.is_active:
        return ANONYMOUS
    return build_context(
        identity=member.id,
        email=member.email,
        tenant_id=member.tenant_id,
        role=member.role,
    )


def claims_disagree(claimed: AuthContext, verified: AuthContext) -> bool:
    return (claimed.tenant_id, claimed.role) != (verified.tenant_id, verified.role)


def issue_access_token(member) -> str:
    return create_access_token(
        str(member.id),
        claims={
            "email": member.email,
            "tenant_id": str(member.tenant_id) if member.tenant_id else None,
            "role": member.role,
        },
    )


async def verify_against_store(db, claimed: AuthContext) -> AuthContext:
    """
    Re-read the caller's Member row and rebuild the context from it. Tenant and
    role in the token may be stale (e.g. the member was moved to another school
    after the token was minted); the row wins.
    """
    if not claimed.is_authenticated or claimed.identity is None:
        return ANONYMOUS

    member = await db.get(Member, claimed.identity)
    verified = context_from_member(member)
    if verified.is_authenticated and claims_disagree(claimed, verified):
        logger.info(
            "stale token claims",
            extra={
                "member_id": str(claimed.identity),
                "claimed_tenant": str(claimed.tenant_id) if claimed.tenant_id else None,
                "claimed_role": claimed.role,
                "actual_tenant": str(verified.tenant_id) if verified.tenant_id else None,
                "actual_role": verified.role,
            },
        )
    return verified
