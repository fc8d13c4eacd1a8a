from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from ..types import PersonType


class FavoriteItem(BaseModel):
    favorite_id: str
    person_id: str
    full_name: str
    ci: str
    contractor: str | None = None
    type: PersonType
    inside: bool
    open_session_id: str | None = None
    entry_at: datetime | None = None
    hours: float | None = None
    status: str | None = None

    class Config:
        from_attributes = True


class FavoriteToggleResponse(BaseModel):
    person_id: str
    favorite: bool
    changed: bool
