from __future__ import annotations

import uuid
from typing import List
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.auth import get_auth_context
from app.auth.context import AuthContext
from app.core.config import settings
from app.core.context import request_id_var
from app.db.session import get_db
from app.schemas.invitation import (
    AcceptInvitation,
    InvitationCreate,
    InvitationCreatedOut,
    InvitationOut,
    OrganizationRefOut,
)
from app.services import invitations as service
from app.services.audit import request_meta

router = APIRouter(prefix="/invitations", tags=["invitations"])


def _accept_url(request: Request, token: str) -> str:
    base = (request.headers.get("origin") or settings.PUBLIC_APP_URL).rstrip("/")
    return f"{base}/invite/accept?{urlencode({'token': token})}"


# =========================================================
# CREATE + LIST (tenant admins)
# =========================================================
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invitation(
    payload: InvitationCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    """
    Invite an email address into a school with a role. Requires a bearer token
    of an admin/owner of that school (or a platform super-admin).
    """
    created = await service.create_invitation(
        db,
        ctx,
        email=str(payload.email),
        role=payload.roleSlug,
        tenant_id=payload.organizationId,
        meta=request_meta(request),
    )
    out = InvitationCreatedOut(
        id=created.id,
        email=created.email,
        role=created.role,
        organization=OrganizationRefOut(**created.organization.as_dict()),
        expires_at=created.expires_at,
        accept_url=_accept_url(request, created.token),
    )
    return {"success": True, "invitation": out.model_dump(mode="json")}


@router.get("", response_model=List[InvitationOut])
async def list_invitations(
    organizationId: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    return await service.list_invitations(db, ctx, organizationId)


@router.post("/{invitation_id}/revoke")
async def revoke_invitation(
    invitation_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    await service.revoke_invitation(db, ctx, invitation_id, meta=request_meta(request))
    return {"success": True, "id": str(invitation_id), "status": "revoked"}


# =========================================================
# ACCEPT (bearer optional)
# =========================================================
@router.post("/accept")
async def accept_invitation(
    payload: AcceptInvitation,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    """
    Body: {"token": "...", "userEmail": "..."}

    Anonymous callers whose email matches get requiresSignup back; the client
    signs them up and calls again with the new bearer token.
    """
    outcome = await service.accept_invitation(
        db,
        payload.token,
        caller_identity=ctx.identity if ctx.is_authenticated else None,
        caller_email=payload.userEmail,
        meta=request_meta(request),
    )

    if isinstance(outcome, service.RequiresSignup):
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "success": False,
                "requiresSignup": True,
                "email": outcome.email,
                "role": outcome.role,
                "organization": outcome.organization.as_dict(),
                "requestId": request_id_var.get() or None,
            },
        )

    return {
        "success": True,
        "organization": outcome.organization.as_dict(),
        "role": outcome.role,
        "message": f"You have joined {outcome.organization.name} as {outcome.role}",
    }
