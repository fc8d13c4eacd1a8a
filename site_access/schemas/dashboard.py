from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from ..types import PersonType


class InsideItem(BaseModel):
    session_id: str
    person_id: str
    full_name: str
    ci: str
    contractor: str | None = None
    type: PersonType | None = None
    entry_at: datetime
    hours: float
    status: str

    class Config:
        from_attributes = True


class ContractorItem(BaseModel):
    contractor: str
    inside: int
    entries_today: int

    class Config:
        from_attributes = True


class InsuranceWarningItem(BaseModel):
    person_id: str
    full_name: str
    ci: str
    contractor: str | None = None
    insurance_number: str | None = None
    insurance_expiry: date
    days_left: int
    expired: bool

    class Config:
        from_attributes = True


class DashboardResponse(BaseModel):
    site_id: str
    generated_at: datetime
    inside_now: int
    entries_today: int
    exits_today: int
    warn_count: int
    crit_count: int
    inside: list[InsideItem]
    contractors: list[ContractorItem]
    insurance_warnings: list[InsuranceWarningItem] = []

    class Config:
        from_attributes = True
