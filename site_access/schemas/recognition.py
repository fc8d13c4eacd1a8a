from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from ..types import AccessAction
from .access import TransitionResponse
from .person import PersonResponse


class RecognitionRequest(BaseModel):
    action: AccessAction
    descriptor: list[float] | None = None
    # base64 JPEG/PNG frame, data URLs accepted
    image: str | None = None
    observations: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _one_source(self) -> "RecognitionRequest":
        if (self.descriptor is None) == (self.image is None):
            raise ValueError("Provide exactly one of 'descriptor' or 'image'.")
        return self


class IdentifyResponse(BaseModel):
    matched: bool
    outcome: str
    message: str = ""
    person: PersonResponse | None = None
    distance: float | None = None
    inside: bool | None = None
    open_session_id: str | None = None


class ScanResponse(IdentifyResponse):
    transition: TransitionResponse | None = None
