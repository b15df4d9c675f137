from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import AuthContext, resolve_auth_context
from app.core.context import tenant_id_var
from app.core.errors import AuthenticationError
from app.core.security import bearer_scheme
from app.db.session import get_db
from app.models.member import Member


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    """
    Claims-only context. Never fails: anonymous callers get an unauthenticated
    context and the service decides whether that is acceptable.
    """
    ctx = resolve_auth_context(credentials.credentials if credentials else None)
    if ctx.tenant_id is not None:
        tenant_id_var.set(str(ctx.tenant_id))
    return ctx


async def get_current_member(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> Member:
    """
    Dependency for protected endpoints.
    """
    if not ctx.is_authenticated or ctx.identity is None:
        raise AuthenticationError("Invalid token")

    member = await db.get(Member, ctx.identity)
    if member is None:
        raise AuthenticationError("User not found")
    if not member.is_active:
        raise AuthenticationError("User inactive")
    return member

