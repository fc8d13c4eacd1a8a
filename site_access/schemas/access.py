from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..types import AccessAction, PersonType


class EntryRequest(BaseModel):
    person_id: str
    observations: str | None = Field(default=None, max_length=500)


class ExitRequest(BaseModel):
    person_id: str
    session_id: str | None = None


class SessionResponse(BaseModel):
    id: str
    site_id: str
    person_id: str
    entry_at: datetime
    exit_at: datetime | None = None
    observations: str | None = None
    entry_by_user_id: str | None = None
    exit_by_user_id: str | None = None
    ci_snapshot: str | None = None
    name_snapshot: str | None = None
    type_snapshot: PersonType | None = None
    contractor_snapshot: str | None = None
    voided_at: datetime | None = None
    voided_by_user_id: str | None = None
    void_reason: str | None = None
    is_open: bool

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    action: AccessAction
    accepted: bool
    outcome: str
    message: str = ""
    session: SessionResponse | None = None

    class Config:
        from_attributes = True


class ReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class SessionEditRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    entry_at: datetime | None = None
    exit_at: datetime | None = None
    observations: str | None = Field(default=None, max_length=500)
