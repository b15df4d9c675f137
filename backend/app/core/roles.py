# app/core/roles.py

import enum


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"  # platform level, never tenant-scoped
    OWNER = "owner"              # tenant creator / ultimate authority
    ADMIN = "admin"              # school admin; with no tenant => platform super-admin
    TEACHER = "teacher"
    STAFF = "staff"
    STUDENT = "student"
    MEMBER = "member"            # signed up, no school role yet


ALL_ROLES = frozenset(r.value for r in Role)

# Roles an inviter may hand out through an invitation
INVITABLE_ROLES = frozenset({"admin", "teacher", "student", "staff", "member"})

# Roles accepted by the shared-secret assignTenant endpoint
ASSIGNABLE_ROLES = ("admin", "teacher", "student", "staff")

# Roles that administer a tenant
TENANT_ADMIN_ROLES = frozenset({"admin", "owner"})


def normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()
