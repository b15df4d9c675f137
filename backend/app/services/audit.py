"""Audit log helper: call from services after the primary write has committed."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


NO_REQUEST = RequestMeta()


def get_client_ip(request) -> Optional[str]:
    """Extract IP, respecting X-Forwarded-For from the load balancer."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else None


def request_meta(request) -> RequestMeta:
    return RequestMeta(
        ip_address=get_client_ip(request),
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
    )


async def record_audit_event(
    db: AsyncSession,
    *,
    actor_id: Optional[uuid.UUID],
    tenant_id: Optional[uuid.UUID],
    action: str,
    target_type: str,
    target_id: Any = None,
    details: Optional[dict[str, Any]] = None,
    meta: RequestMeta = NO_REQUEST,
) -> bool:
    """
    Best-effort: a failed audit write is logged and swallowed, it never fails
    the operation being audited. Returns whether the entry was stored.
    """
    entry = AuditLogEntry(
        actor_id=actor_id,
        tenant_id=tenant_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details or {},
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "audit write failed",
            extra={"action": action, "target_type": target_type, "target_id": entry.target_id},
        )
        return False
    return True
