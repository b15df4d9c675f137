# Import models here so Alembic can discover metadata.
from app.models.tenant import Tenant  # noqa: F401
from app.models.member import Member  # noqa: F401

# Access control: invitations, generated credentials, audit trail
from app.models.invitation import Invitation  # noqa: F401
from app.models.credential import Credential  # noqa: F401
from app.models.audit_log import AuditLogEntry  # noqa: F401

# Role-specific profile records
from app.models.student import Student  # noqa: F401
from app.models.teacher import Teacher  # noqa: F401
from app.models.staff import StaffMember  # noqa: F401
