"""Request-scoped context variables used by logging and error responses."""

from contextvars import ContextVar

# Correlation id, one per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Tenant of the authenticated caller, when known
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")
