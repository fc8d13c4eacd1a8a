from __future__ import annotations

from pydantic import BaseModel


class CurrentPrincipal(BaseModel):
    subject: str
    role: str
