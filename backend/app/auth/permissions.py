"""
Access policy evaluator.

authorize() is a pure function of (context, action, resource): no I/O, no
clock, no globals beyond the static role table below. The same inputs always
produce the same Decision.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Mapping, Optional

from app.core.errors import AuthenticationError, AuthorizationError, DenyReason
from app.core.roles import Role, normalize_role

if TYPE_CHECKING:
    from app.auth.context import AuthContext


@dataclass(frozen=True)
class Permission:
    # organization.*
    ORGANIZATION_READ: str = "organization.read"
    ORGANIZATION_CREATE: str = "organization.create"
    ORGANIZATION_UPDATE: str = "organization.update"

    # member.*
    MEMBER_READ: str = "member.read"
    MEMBER_UPDATE: str = "member.update"
    MEMBER_INVITE: str = "member.invite"

    # invitation.*
    INVITATION_READ: str = "invitation.read"
    INVITATION_REVOKE: str = "invitation.revoke"

    # role records
    STUDENT_READ: str = "student.read"
    STUDENT_CREATE: str = "student.create"
    TEACHER_READ: str = "teacher.read"
    TEACHER_CREATE: str = "teacher.create"
    STAFF_READ: str = "staff.read"
    STAFF_CREATE: str = "staff.create"

    # wildcards (domain-level)
    ORGANIZATION_ALL: str = "organization.*"
    MEMBER_ALL: str = "member.*"
    INVITATION_ALL: str = "invitation.*"
    STUDENT_ALL: str = "student.*"
    TEACHER_ALL: str = "teacher.*"
    STAFF_ALL: str = "staff.*"
    CREDENTIAL_ALL: str = "credential.*"
    AUDIT_LOG_ALL: str = "audit_log.*"


PERM = Permission()

_TENANT_ADMIN_GRANTS = frozenset(
    {
        PERM.ORGANIZATION_READ,
        PERM.ORGANIZATION_UPDATE,
        PERM.MEMBER_ALL,
        PERM.INVITATION_ALL,
        PERM.STUDENT_ALL,
        PERM.TEACHER_ALL,
        PERM.STAFF_ALL,
        PERM.CREDENTIAL_ALL,
        PERM.AUDIT_LOG_ALL,
    }
)

ROLE_BASE_PERMISSIONS: Mapping[str, FrozenSet[str]] = {
    Role.OWNER.value: _TENANT_ADMIN_GRANTS,
    Role.ADMIN.value: _TENANT_ADMIN_GRANTS,
    Role.TEACHER.value: frozenset(
        {
            PERM.ORGANIZATION_READ,
            PERM.STUDENT_READ,
            PERM.TEACHER_READ,
        }
    ),
    Role.STAFF.value: frozenset(
        {
            PERM.ORGANIZATION_READ,
            PERM.STUDENT_READ,
            PERM.STAFF_READ,
        }
    ),
    Role.STUDENT.value: frozenset({PERM.ORGANIZATION_READ}),
    # signed up, not yet attached to a school
    Role.MEMBER.value: frozenset(),
}

# Resource types that live inside exactly one tenant
TENANT_SCOPED_TYPES = frozenset(
    {"organization", "member", "invitation", "student", "teacher", "staff", "credential", "audit_log"}
)


@dataclass(frozen=True)
class Resource:
    type: str
    tenant_id: Optional[uuid.UUID] = None
    owner_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: DenyReason) -> Decision:
    return Decision(False, reason)


def effective_permissions(role: str | None) -> FrozenSet[str]:
    return ROLE_BASE_PERMISSIONS.get(normalize_role(role), frozenset())


def _has_domain_wildcard(grants: FrozenSet[str], required: str) -> bool:
    if required in grants:
        return True
    idx = required.find(".")
    if idx <= 0:
        return False
    domain = required[:idx]
    return f"{domain}.*" in grants


def authorize(context: "AuthContext", action: str, resource: Resource) -> Decision:
    """
    Rules, first match wins:
      1. unauthenticated                        -> NotAuthenticated
      2. platform super-admin                   -> allow
      3. tenant-scoped resource, other tenant   -> TenantMismatch
      4. "<type>.<action>" granted (or "<type>.*") -> allow
      5. update of the caller's own resource     -> allow
      6. read inside the caller's tenant         -> allow
      7.                                         -> PermissionMissing
    """
    if not context.is_authenticated:
        return deny(DenyReason.NOT_AUTHENTICATED)

    if context.is_super_admin:
        return ALLOW

    if resource.type in TENANT_SCOPED_TYPES and resource.tenant_id is not None:
        if context.tenant_id is None or resource.tenant_id != context.tenant_id:
            return deny(DenyReason.TENANT_MISMATCH)

    if _has_domain_wildcard(context.permissions, f"{resource.type}.{action}"):
        return ALLOW

    if action == "update" and resource.owner_id is not None and resource.owner_id == context.identity:
        return ALLOW

    if action == "read" and resource.tenant_id is not None and resource.tenant_id == context.tenant_id:
        return ALLOW

    return deny(DenyReason.PERMISSION_MISSING)


def require_role(context: "AuthContext", *roles: str) -> Decision:
    if not context.is_authenticated:
        return deny(DenyReason.NOT_AUTHENTICATED)
    allowed = {normalize_role(r) for r in roles}
    if normalize_role(context.role) in allowed:
        return ALLOW
    return deny(DenyReason.ROLE_MISMATCH)


def ensure_allowed(decision: Decision, message: str = "Not allowed") -> None:
    """Raise AuthorizationError for a deny; the route layer renders it as 401/403."""
    if decision.allowed:
        return
    if decision.reason == DenyReason.NOT_AUTHENTICATED:
        raise AuthenticationError("Authentication required")
    raise AuthorizationError(message, reason=decision.reason)
