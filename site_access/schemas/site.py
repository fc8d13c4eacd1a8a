from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SiteCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    timezone: str | None = None


class SiteResponse(BaseModel):
    id: str
    name: str
    timezone: str

    class Config:
        from_attributes = True


class SiteSettingsUpdate(BaseModel):
    warn_hours: float = Field(gt=0)
    crit_hours: float = Field(gt=0)
    seguro_warn_days: int = Field(default=30, ge=0)


class SiteSettingsResponse(BaseModel):
    site_id: str
    warn_hours: float
    crit_hours: float
    seguro_warn_days: int
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
