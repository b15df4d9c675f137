"""Application error taxonomy.

Every error carries a stable ``code`` so callers can branch on it instead of
parsing the message. The FastAPI handlers in ``app.main`` render these as
``{"success": false, "error": ..., "code": ..., "requestId": ...}``.
"""

from __future__ import annotations

import enum
from typing import Any, Optional


class DenyReason(str, enum.Enum):
    NOT_AUTHENTICATED = "NotAuthenticated"
    ROLE_MISMATCH = "RoleMismatch"
    PERMISSION_MISSING = "PermissionMissing"
    TENANT_MISMATCH = "TenantMismatch"


class AppError(Exception):
    status_code: int = 400
    default_code: str = "Error"
    # extra response headers, e.g. CORS on public endpoints
    headers: Optional[dict[str, str]] = None

    def __init__(self, message: str, *, code: Optional[str] = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class ValidationError(AppError):
    status_code = 400
    default_code = "ValidationError"


class AuthenticationError(AppError):
    status_code = 401
    default_code = DenyReason.NOT_AUTHENTICATED.value


class AuthorizationError(AppError):
    status_code = 403
    default_code = "AuthorizationError"

    def __init__(self, message: str, *, reason: DenyReason | None = None, code: Optional[str] = None, **extra: Any):
        super().__init__(message, code=code or (reason.value if reason else None), **extra)
        self.reason = reason


class NotFoundError(AppError):
    status_code = 404
    default_code = "NotFound"


class ConflictError(AppError):
    status_code = 409
    default_code = "Conflict"


class ExpiredError(AppError):
    status_code = 410
    default_code = "Expired"


class ConfigurationError(AppError):
    status_code = 500
    default_code = "ConfigurationError"


class UpstreamError(AppError):
    status_code = 500
    default_code = "UpstreamError"

    def __init__(self, message: str, *, step: str, **extra: Any) -> None:
        super().__init__(message, step=step, **extra)
        self.step = step


# ---------------------------------------------------------
# Invitation-specific discriminants
# ---------------------------------------------------------
INVALID_OR_EXPIRED_TOKEN = "InvalidOrExpiredToken"
INVITATION_EXPIRED = "InvitationExpired"
EMAIL_MISMATCH = "EmailMismatch"
ALREADY_MEMBER = "AlreadyMember"
DUPLICATE_MEMBER = "DuplicateMember"
DUPLICATE_PENDING_INVITE = "DuplicatePendingInvite"
