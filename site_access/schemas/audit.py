from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from ..types import Role


class AuditEventResponse(BaseModel):
    id: str
    site_id: str
    action: str
    user_id: str | None = None
    role_snapshot: Role | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    note: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
