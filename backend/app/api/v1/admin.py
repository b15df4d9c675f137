from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.auth import get_auth_context
from app.auth.context import AuthContext
from app.db.session import get_db
from app.schemas.credential import (
    CredentialActiveIn,
    CredentialBackfillOut,
    CredentialOut,
    CredentialResetOut,
    IssuedCredentialOut,
)
from app.schemas.provisioning import (
    OrganizationCreate,
    OrganizationCreatedOut,
    OrganizationOut,
    PlatformAdminCreate,
    ProvisionedOut,
    StaffCreate,
    StudentCreate,
    TeacherCreate,
)
from app.services import credential_admin, provisioning
from app.services.audit import request_meta

router = APIRouter(prefix="/admin", tags=["admin"])


def _provisioned(result: provisioning.ProvisionResult) -> ProvisionedOut:
    return ProvisionedOut(
        user_id=result.member_id,
        username=result.username,
        default_password=result.default_password,
    )


@router.post("/students", response_model=ProvisionedOut, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProvisionedOut:
    result = await provisioning.provision_student(db, ctx, payload, meta=request_meta(request))
    return _provisioned(result)


@router.post("/teachers", response_model=ProvisionedOut, status_code=status.HTTP_201_CREATED)
async def create_teacher(
    payload: TeacherCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProvisionedOut:
    result = await provisioning.provision_teacher(db, ctx, payload, meta=request_meta(request))
    return _provisioned(result)


@router.post("/staff", response_model=ProvisionedOut, status_code=status.HTTP_201_CREATED)
async def create_staff(
    payload: StaffCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProvisionedOut:
    result = await provisioning.provision_staff(db, ctx, payload, meta=request_meta(request))
    return _provisioned(result)


@router.post("/organizations", response_model=OrganizationCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> OrganizationCreatedOut:
    created = await provisioning.provision_organization(db, ctx, payload, meta=request_meta(request))
    return OrganizationCreatedOut(
        organization=OrganizationOut(id=created.id, name=created.name, slug=created.slug, status=created.status)
    )


@router.post("/super-admins", response_model=ProvisionedOut, status_code=status.HTTP_201_CREATED)
async def create_super_admin(
    payload: PlatformAdminCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProvisionedOut:
    result = await provisioning.create_platform_admin(db, ctx, payload, meta=request_meta(request))
    return _provisioned(result)


# =========================================================
# Credentials
# =========================================================
@router.get("/credentials", response_model=List[CredentialOut])
async def list_credentials(
    school_id: Optional[uuid.UUID] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> List[CredentialOut]:
    views = await credential_admin.list_credentials(db, ctx, school_id)
    return [CredentialOut.model_validate(v) for v in views]


@router.post("/credentials/backfill", response_model=CredentialBackfillOut)
async def backfill_credentials(
    request: Request,
    school_id: Optional[uuid.UUID] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CredentialBackfillOut:
    issued = await credential_admin.backfill_credentials(db, ctx, school_id, meta=request_meta(request))
    return CredentialBackfillOut(
        issued=len(issued),
        credentials=[
            IssuedCredentialOut(user_id=i.member_id, username=i.username, default_password=i.default_password)
            for i in issued
        ],
    )


@router.post("/credentials/{credential_id}/reset", response_model=CredentialResetOut)
async def reset_credential(
    credential_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CredentialResetOut:
    reset = await credential_admin.reset_default_password(db, ctx, credential_id, meta=request_meta(request))
    return CredentialResetOut(id=reset.id, username=reset.username, default_password=reset.default_password)


@router.post("/credentials/{credential_id}/active")
async def set_credential_active(
    credential_id: uuid.UUID,
    payload: CredentialActiveIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    await credential_admin.set_credential_active(
        db, ctx, credential_id, payload.is_active, meta=request_meta(request)
    )
    return {"success": True, "id": str(credential_id), "is_active": payload.is_active}
