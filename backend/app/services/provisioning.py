"""
Admin provisioning: create students, teachers and staff inside a school,
schools themselves, and platform administrators.

A member is provisioned in three separately committed steps:

    1. identity      Member row (email, names, role, tenant)
    2. role record   students / teachers / staff row
    3. credentials   generated username + default password

Input is fully validated (schema, caller, tenant, uniqueness) before step 1.
When step 2 or 3 fails the earlier steps stay committed and UpstreamError
reports the failed step together with the new member's id, so the admin can
finish the record instead of creating a duplicate identity.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import AuthContext, verify_against_store
from app.auth.permissions import Resource, authorize, ensure_allowed, require_role
from app.core.errors import (
    DUPLICATE_MEMBER,
    AppError,
    AuthorizationError,
    ConflictError,
    DenyReason,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.core.roles import Role, TENANT_ADMIN_ROLES
from app.db.base import Base
from app.models.credential import Credential
from app.models.member import Member
from app.models.staff import StaffMember
from app.models.student import Student
from app.models.teacher import Teacher
from app.models.tenant import Tenant
from app.schemas.provisioning import (
    OrganizationCreate,
    PersonBase,
    PlatformAdminCreate,
    StaffCreate,
    StudentCreate,
    TeacherCreate,
)
from app.services.audit import NO_REQUEST, RequestMeta, record_audit_event
from app.services.credential_events import MemberInserted, on_member_inserted

logger = logging.getLogger(__name__)

STEP_ROLE_RECORD = "role_record"
STEP_CREDENTIALS = "credentials"


@dataclass(frozen=True)
class ProvisionResult:
    member_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    username: str
    default_password: Optional[str]


@dataclass(frozen=True)
class CreatedOrganization:
    id: uuid.UUID
    name: str
    slug: str
    status: str
    owner_id: Optional[uuid.UUID]


async def _resolve_target_tenant(
    db: AsyncSession,
    caller: AuthContext,
    school_id: Optional[uuid.UUID],
    resource_type: str,
) -> tuple[AuthContext, uuid.UUID]:
    verified = await verify_against_store(db, caller)
    if not verified.is_super_admin:
        ensure_allowed(
            require_role(verified, *TENANT_ADMIN_ROLES),
            "Only school admins can provision members",
        )

    target = school_id or verified.tenant_id
    if target is None:
        raise ValidationError("school_id is required", fields=["school_id"])

    if not verified.is_super_admin and target != verified.tenant_id:
        raise AuthorizationError("Invalid school scope", reason=DenyReason.TENANT_MISMATCH)

    ensure_allowed(
        authorize(verified, "create", Resource(type=resource_type, tenant_id=target)),
        f"You are not allowed to create {resource_type} records",
    )

    tenant = await db.get(Tenant, target)
    if tenant is None:
        raise NotFoundError("School not found")
    if not tenant.is_active:
        raise ConflictError("School is suspended", code="OrganizationSuspended")
    return verified, target


async def _provision_member(
    db: AsyncSession,
    caller: AuthContext,
    payload: PersonBase,
    *,
    role: str,
    resource_type: str,
    unique_field: tuple,
    build_record: Callable[[uuid.UUID, uuid.UUID], Base],
    meta: RequestMeta,
) -> ProvisionResult:
    email = Member.normalize_email(str(payload.email))

    # --- validation: nothing is written before this block passes
    try:
        verified, tenant_id = await _resolve_target_tenant(db, caller, payload.school_id, resource_type)

        taken = (await db.execute(select(Member.id).where(Member.email == email))).first()
        if taken is not None:
            raise ConflictError("A user with this email already exists", code=DUPLICATE_MEMBER)

        model, attr, value, label = unique_field
        clash = (
            await db.execute(
                select(model.id).where(getattr(model, attr) == value, model.tenant_id == tenant_id)
            )
        ).first()
        if clash is not None:
            raise ConflictError(f"{label} {value!r} is already in use in this school", code="DuplicateIdentifier")
    except AppError:
        await db.rollback()
        raise

    # --- step 1: identity
    member = Member(
        tenant_id=tenant_id,
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        date_of_birth=payload.date_of_birth,
        gender=payload.gender,
        address=payload.address,
        role=role,
        is_active=True,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("A user with this email already exists", code=DUPLICATE_MEMBER)

    member_id = member.id
    logger.info("member created", extra={"member_id": str(member_id), "role": role})

    # --- step 2: role-specific record
    try:
        db.add(build_record(member_id, tenant_id))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("role record failed", extra={"member_id": str(member_id), "step": STEP_ROLE_RECORD})
        raise UpstreamError(
            f"Failed to create {resource_type} record",
            step=STEP_ROLE_RECORD,
            user_id=str(member_id),
        )

    # --- step 3: credentials (member-inserted consumer)
    event = MemberInserted(
        member_id=member_id,
        tenant_id=tenant_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=role,
    )
    try:
        issued = await on_member_inserted(db, event, default_password=payload.password)
    except (SQLAlchemyError, RuntimeError):
        await db.rollback()
        logger.exception("credential issue failed", extra={"member_id": str(member_id), "step": STEP_CREDENTIALS})
        raise UpstreamError(
            "Failed to create login credentials",
            step=STEP_CREDENTIALS,
            user_id=str(member_id),
        )

    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=tenant_id,
        action=f"{resource_type}.created",
        target_type="member",
        target_id=member_id,
        details={"role": role, "username": issued.username},
        meta=meta,
    )

    return ProvisionResult(
        member_id=member_id,
        tenant_id=tenant_id,
        username=issued.username,
        default_password=issued.default_password,
    )


# =========================================================
# Role-specific records
# =========================================================
def student_record(payload: StudentCreate, member_id: uuid.UUID, tenant_id: uuid.UUID) -> Student:
    return Student(
        member_id=member_id,
        tenant_id=tenant_id,
        student_id=payload.student_id,
        admission_date=payload.admission_date,
        roll_number=payload.roll_number,
        class_id=payload.class_id,
        section=payload.section,
        academic_year=payload.academic_year,
        parent_name=payload.parent_name,
        parent_phone=payload.parent_phone,
        parent_email=str(payload.parent_email) if payload.parent_email else None,
    )


def teacher_record(payload: TeacherCreate, member_id: uuid.UUID, tenant_id: uuid.UUID) -> Teacher:
    return Teacher(
        member_id=member_id,
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        hire_date=payload.hire_date,
        qualification=payload.qualification,
        specialization=payload.specialization,
        department=payload.department,
        subjects_taught=list(payload.subjects_taught),
        experience_years=payload.experience_years,
        employment_type=payload.employment_type,
    )


def staff_record(payload: StaffCreate, member_id: uuid.UUID, tenant_id: uuid.UUID) -> StaffMember:
    return StaffMember(
        member_id=member_id,
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        position=payload.position,
        hire_date=payload.hire_date,
        department=payload.department,
        employment_type=payload.employment_type,
    )


# =========================================================
# Public operations
# =========================================================
async def provision_student(
    db: AsyncSession, caller: AuthContext, payload: StudentCreate, *, meta: RequestMeta = NO_REQUEST
) -> ProvisionResult:
    return await _provision_member(
        db,
        caller,
        payload,
        role=Role.STUDENT.value,
        resource_type="student",
        unique_field=(Student, "student_id", payload.student_id, "Student ID"),
        build_record=lambda member_id, tenant_id: student_record(payload, member_id, tenant_id),
        meta=meta,
    )


async def provision_teacher(
    db: AsyncSession, caller: AuthContext, payload: TeacherCreate, *, meta: RequestMeta = NO_REQUEST
) -> ProvisionResult:
    return await _provision_member(
        db,
        caller,
        payload,
        role=payload.role,
        resource_type="teacher",
        unique_field=(Teacher, "employee_id", payload.employee_id, "Employee ID"),
        build_record=lambda member_id, tenant_id: teacher_record(payload, member_id, tenant_id),
        meta=meta,
    )


async def provision_staff(
    db: AsyncSession, caller: AuthContext, payload: StaffCreate, *, meta: RequestMeta = NO_REQUEST
) -> ProvisionResult:
    return await _provision_member(
        db,
        caller,
        payload,
        role=Role.STAFF.value,
        resource_type="staff",
        unique_field=(StaffMember, "employee_id", payload.employee_id, "Employee ID"),
        build_record=lambda member_id, tenant_id: staff_record(payload, member_id, tenant_id),
        meta=meta,
    )


async def provision_organization(
    db: AsyncSession, caller: AuthContext, payload: OrganizationCreate, *, meta: RequestMeta = NO_REQUEST
) -> CreatedOrganization:
    """Super-admin only. The optional owner is moved into the new school as its owner."""
    try:
        verified = await verify_against_store(db, caller)
        ensure_allowed(
            authorize(verified, "create", Resource(type="organization")),
            "Only platform administrators can create schools",
        )

        slug_taken = (await db.execute(select(Tenant.id).where(Tenant.slug == payload.slug))).first()
        if slug_taken is not None:
            raise ConflictError("An organization with this slug already exists", code="SlugTaken")

        owner: Optional[Member] = None
        if payload.owner_id is not None:
            owner = await db.get(Member, payload.owner_id)
            if owner is None or not owner.is_active:
                raise NotFoundError("Owner not found")

        tenant = Tenant(name=payload.name.strip(), slug=payload.slug)
        db.add(tenant)
        await db.flush()

        if owner is not None:
            owner.tenant_id = tenant.id
            owner.role = Role.OWNER.value

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("An organization with this slug already exists", code="SlugTaken")
    except AppError:
        await db.rollback()
        raise

    created = CreatedOrganization(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        status=tenant.status,
        owner_id=payload.owner_id,
    )
    logger.info("organization created", extra={"organization_id": str(created.id), "slug": created.slug})

    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=created.id,
        action="organization.created",
        target_type="organization",
        target_id=created.id,
        details={"name": created.name, "slug": created.slug, "owner_id": str(created.owner_id) if created.owner_id else None},
        meta=meta,
    )
    return created


async def create_platform_admin(
    db: AsyncSession, caller: AuthContext, payload: PlatformAdminCreate, *, meta: RequestMeta = NO_REQUEST
) -> ProvisionResult:
    """
    Super-admin only. The new operator belongs to no school and logs in with
    the chosen username; the password counts as a default, so the first login
    asks for rotation.
    """
    email = Member.normalize_email(str(payload.email))
    try:
        verified = await verify_against_store(db, caller)
        ensure_allowed(
            authorize(verified, "create", Resource(type="platform_admin")),
            "Only platform administrators can create platform administrators",
        )

        taken = (await db.execute(select(Member.id).where(Member.email == email))).first()
        if taken is not None:
            raise ConflictError("A user with this email already exists", code=DUPLICATE_MEMBER)

        username_taken = (
            await db.execute(select(Credential.id).where(Credential.username == payload.username))
        ).first()
        if username_taken is not None:
            raise ConflictError("Username already exists", code="UsernameTaken")

        member = Member(
            tenant_id=None,
            email=email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            role=Role.ADMIN.value,
            is_active=True,
        )
        db.add(member)
        await db.flush()
        db.add(
            Credential(
                member_id=member.id,
                username=payload.username,
                default_password=payload.password,
                password_changed=False,
                is_active=True,
            )
        )
        member_id = member.id
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("A user with this email or username already exists", code=DUPLICATE_MEMBER)
    except AppError:
        await db.rollback()
        raise

    logger.info("platform admin created", extra={"member_id": str(member_id)})
    await record_audit_event(
        db,
        actor_id=verified.identity,
        tenant_id=None,
        action="platform_admin.created",
        target_type="member",
        target_id=member_id,
        details={"username": payload.username},
        meta=meta,
    )
    return ProvisionResult(
        member_id=member_id,
        tenant_id=None,
        username=payload.username,
        default_password=None,
    )
