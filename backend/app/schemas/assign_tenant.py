from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AssignTenantIn(BaseModel):
    """
    Every field optional; the route checks presence, role and UUID format
    itself and answers with its own messages.
    """

    model_config = ConfigDict(extra="ignore")

    userId: Optional[Any] = None
    tenantId: Optional[Any] = None
    role: Optional[Any] = None
