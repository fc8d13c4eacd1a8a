from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

import numpy as np


class AccessAction(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class PersonType(str, Enum):
    WORKER = "worker"
    VISITOR = "visitor"


class Role(str, Enum):
    GUARD = "guard"
    SUPERVISOR = "supervisor"


class ChangeKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    FORCE_EXIT = "force_exit"
    VOID = "void"
    EDIT = "edit"


@dataclass(frozen=True)
class OperationContext:
    """Who is acting, and at which site, for one operation."""

    site_id: str
    actor_id: str | None = None
    actor_role: Role | None = None


@dataclass
class Person:
    id: str
    site_id: str
    full_name: str
    ci: str
    type: PersonType
    contractor: str | None = None
    face_descriptor: np.ndarray | None = None
    insurance_number: str | None = None
    insurance_expiry: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_descriptor(self) -> bool:
        return self.face_descriptor is not None


@dataclass
class AccessSession:
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
    created_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.exit_at is None and self.voided_at is None

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None


@dataclass
class AuditEvent:
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


@dataclass
class Site:
    id: str
    name: str
    timezone: str


@dataclass
class SiteSettings:
    site_id: str
    warn_hours: float = 10.0
    crit_hours: float = 12.0
    seguro_warn_days: int = 30
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Candidate:
    person_id: str
    descriptor: np.ndarray


@dataclass
class CandidatePool:
    site_id: str
    action: AccessAction
    candidates: list[Candidate] = field(default_factory=list)
    # person_id -> open session id, exit pools only
    open_sessions: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.candidates)

    def __bool__(self) -> bool:
        return bool(self.candidates)


@dataclass(frozen=True)
class MatchResult:
    person_id: str
    distance: float


@dataclass
class Identification:
    person: Person
    match: MatchResult
    inside: bool
    open_session_id: str | None = None


@dataclass
class TransitionResult:
    action: AccessAction
    accepted: bool
    session: AccessSession | None = None
    outcome: str = "accepted"
    message: str = ""


@dataclass(frozen=True)
class AccessChange:
    site_id: str
    kind: ChangeKind
    session_id: str
    person_id: str
    occurred_at: datetime


@dataclass
class Favorite:
    id: str
    site_id: str
    person_id: str
    created_at: datetime | None = None


@dataclass
class PersonSearchResult:
    person: Person
    inside: bool
    open_session_id: str | None = None
