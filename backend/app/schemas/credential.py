from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class CredentialOut(BaseModel):
    id: UUID
    member_id: UUID
    full_name: str
    role: str
    username: str
    # null once the member has chosen their own password
    default_password: Optional[str] = None
    password_changed: bool
    is_active: bool
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CredentialActiveIn(BaseModel):
    is_active: bool


class CredentialResetOut(BaseModel):
    success: bool = True
    id: UUID
    username: str
    default_password: str


class IssuedCredentialOut(BaseModel):
    user_id: UUID
    username: str
    default_password: Optional[str] = None


class CredentialBackfillOut(BaseModel):
    success: bool = True
    issued: int
    credentials: List[IssuedCredentialOut]
