"""
Shared-secret tenant assignment.

Used by trusted back-office tooling (not end users) to attach an existing
member to a school with a role. Authenticated by the X-Assign-Tenant-Secret
header, which is unrelated to member bearer tokens.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.context import request_id_var
from app.core.errors import AppError, AuthenticationError, ConfigurationError, NotFoundError, ValidationError
from app.core.roles import ASSIGNABLE_ROLES
from app.db.session import get_db
from app.models.member import Member
from app.models.tenant import Tenant
from app.schemas.assign_tenant import AssignTenantIn
from app.services.audit import get_client_ip, record_audit_event, request_meta

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assign-tenant"])

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-assign-tenant-secret",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def _is_uuid(value) -> bool:
    return isinstance(value, str) and bool(UUID_REGEX.match(value))


@router.options("/assignTenant")
async def assign_tenant_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


async def _read_body(request: Request) -> AssignTenantIn:
    """Parsed after the secret check; a body that is not a JSON object counts as empty."""
    raw = await request.body()
    if not raw.strip():
        return AssignTenantIn()
    try:
        data = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    return AssignTenantIn.model_validate(data if isinstance(data, dict) else {})


@router.post("/assignTenant")
async def assign_tenant(
    request: Request,
    response: Response,
    x_assign_tenant_secret: Optional[str] = Header(default=None, alias="x-assign-tenant-secret"),
    db: AsyncSession = Depends(get_db),
):
    for key, value in CORS_HEADERS.items():
        response.headers[key] = value
    try:
        return await _assign_tenant(request, x_assign_tenant_secret, db)
    except AppError as exc:
        exc.headers = {**(exc.headers or {}), **CORS_HEADERS}
        raise


async def _assign_tenant(request: Request, provided_secret: Optional[str], db: AsyncSession) -> dict:
    started = time.monotonic()

    expected = settings.ASSIGN_TENANT_SECRET
    if not expected:
        logger.error("ASSIGN_TENANT_SECRET is not configured")
        raise ConfigurationError("Server configuration error")

    if not provided_secret or not secrets.compare_digest(
        provided_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning(
            "invalid or missing assign-tenant secret",
            extra={"has_secret": bool(provided_secret), "ip": get_client_ip(request)},
        )
        raise AuthenticationError("Unauthorized", code="Unauthorized")

    payload = await _read_body(request)
    user_id, tenant_id, role = payload.userId, payload.tenantId, payload.role

    if not user_id or not tenant_id or not role:
        logger.warning(
            "invalid assign-tenant body",
            extra={"has_user_id": bool(user_id), "has_tenant_id": bool(tenant_id), "has_role": bool(role)},
        )
        raise ValidationError("Missing required fields: userId, tenantId, role")

    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(ASSIGNABLE_ROLES)}")

    if not _is_uuid(user_id) or not _is_uuid(tenant_id):
        raise ValidationError("Invalid UUID format for userId or tenantId")

    member = await db.get(Member, uuid.UUID(user_id))
    if member is None:
        raise NotFoundError("User not found")

    tenant = await db.get(Tenant, uuid.UUID(tenant_id))
    if tenant is None:
        raise NotFoundError("Tenant/School not found")

    previous = {"tenant_id": str(member.tenant_id) if member.tenant_id else None, "role": member.role}
    member.tenant_id = tenant.id
    member.role = role
    school_name = tenant.name
    await db.commit()

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "tenant and role assigned",
        extra={"user_id": user_id, "assigned_tenant": tenant_id, "role": role, "duration_ms": duration_ms},
    )

    await record_audit_event(
        db,
        actor_id=None,
        tenant_id=uuid.UUID(tenant_id),
        action="member.tenant_assigned",
        target_type="member",
        target_id=user_id,
        details={"role": role, "previous": previous},
        meta=request_meta(request),
    )

    return {
        "success": True,
        "message": "Tenant and role assigned successfully",
        "data": {
            "userId": user_id,
            "tenantId": tenant_id,
            "role": role,
            "schoolName": school_name,
        },
        "requestId": request_id_var.get() or None,
        "duration": f"{duration_ms}ms",
    }
