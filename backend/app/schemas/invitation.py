from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class InvitationCreate(BaseModel):
    email: EmailStr
    roleSlug: str = Field(..., description="admin | teacher | student | staff | member")
    organizationId: UUID


class AcceptInvitation(BaseModel):
    # Missing token is answered like an unknown one
    token: Optional[str] = Field(default=None, description="Invitation token")
    userEmail: Optional[str] = Field(default=None, description="Email the invitee is signing in with")


class OrganizationRefOut(BaseModel):
    id: UUID
    name: str
    slug: str


class InvitationCreatedOut(BaseModel):
    id: UUID
    email: EmailStr
    role: str
    organization: OrganizationRefOut
    expires_at: datetime
    accept_url: str


class InvitationOut(BaseModel):
    id: UUID
    tenant_id: UUID
    email: str
    role: str
    status: str
    expires_at: datetime
    created_by: Optional[UUID] = None
    accepted_by: Optional[UUID] = None
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
