from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from ..types import PersonType


class PersonCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=160)
    ci: str = Field(min_length=1, max_length=32)
    type: PersonType = PersonType.WORKER
    contractor: str | None = Field(default=None, max_length=160)
    descriptor: list[float] | None = None
    insurance_number: str | None = Field(default=None, max_length=64)
    insurance_expiry: date | None = None


class InsuranceUpdate(BaseModel):
    insurance_number: str | None = Field(default=None, max_length=64)
    insurance_expiry: date | None = None


class DescriptorUpdate(BaseModel):
    descriptor: list[float] | None = None
    # base64 JPEG/PNG, data URLs accepted
    image: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "DescriptorUpdate":
        if (self.descriptor is None) == (self.image is None):
            raise ValueError("Provide exactly one of 'descriptor' or 'image'.")
        return self


class PersonResponse(BaseModel):
    id: str
    site_id: str
    full_name: str
    ci: str
    type: PersonType
    contractor: str | None = None
    has_descriptor: bool
    insurance_number: str | None = None
    insurance_expiry: date | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PersonSearchItem(BaseModel):
    person: PersonResponse
    inside: bool
    open_session_id: str | None = None

    class Config:
        from_attributes = True
