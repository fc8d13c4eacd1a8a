from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable

import numpy as np

from ..exceptions import InvalidDescriptor
from ..types import AccessSession, AuditEvent, Favorite, Person, PersonType, Role, Site, SiteSettings
from .base import Query, Row, TableStore, table
from .codec import DescriptorCodec

logger = logging.getLogger("site_access.repository")

PEOPLE = "people"
ACCESS_LOGS = "access_logs"
AUDIT_EVENTS = "audit_events"
SITES = "sites"
SITE_SETTINGS = "site_settings"
FAVORITES = "favorites"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_date(value: date | str | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def new_id() -> str:
    return str(uuid.uuid4())


def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def session_to_row(session: AccessSession) -> Row:
    return {
        "id": session.id,
        "site_id": session.site_id,
        "person_id": session.person_id,
        "entry_at": session.entry_at,
        "exit_at": session.exit_at,
        "observations": session.observations,
        "entry_by_user_id": session.entry_by_user_id,
        "exit_by_user_id": session.exit_by_user_id,
        "ci_snapshot": session.ci_snapshot,
        "name_snapshot": session.name_snapshot,
        "type_snapshot": session.type_snapshot.value if session.type_snapshot else None,
        "contractor_snapshot": session.contractor_snapshot,
        "voided_at": session.voided_at,
        "voided_by_user_id": session.voided_by_user_id,
        "void_reason": session.void_reason,
        "created_at": session.created_at,
    }


def session_to_json(session: AccessSession) -> dict[str, Any]:
    """Audit-friendly image of a session row."""
    payload = session_to_row(session)
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in payload.items()}


class AccessRepository:
    """Maps table rows to the canonical Person / AccessSession records."""

    def __init__(self, store: TableStore, codec: DescriptorCodec) -> None:
        self.store = store
        self.codec = codec

    # -- sites -------------------------------------------------------------

    def get_site(self, site_id: str) -> Site | None:
        rows = self.store.select(table(SITES).eq("id", site_id).take(1))
        if not rows:
            return None
        row = rows[0]
        return Site(id=row["id"], name=row["name"], timezone=row.get("timezone") or "UTC")

    def create_site(self, name: str, tz_name: str) -> Site:
        row = self.store.insert(SITES, {"id": new_id(), "name": name, "timezone": tz_name, "created_at": utcnow()})
        return Site(id=row["id"], name=row["name"], timezone=row["timezone"])

    def get_site_settings(self, site_id: str) -> SiteSettings:
        rows = self.store.select(table(SITE_SETTINGS).eq("site_id", site_id).take(1))
        if not rows:
            return SiteSettings(site_id=site_id)
        row = rows[0]
        return SiteSettings(
            site_id=row["site_id"],
            warn_hours=float(row.get("warn_hours") or 10.0),
            crit_hours=float(row.get("crit_hours") or 12.0),
            seguro_warn_days=int(row.get("seguro_warn_days") or 30),
            updated_at=as_utc(row.get("updated_at")),
        )

    def save_site_settings(self, settings: SiteSettings) -> SiteSettings:
        values = {
            "warn_hours": settings.warn_hours,
            "crit_hours": settings.crit_hours,
            "seguro_warn_days": settings.seguro_warn_days,
            "updated_at": utcnow(),
        }
        updated = self.store.update(table(SITE_SETTINGS).eq("site_id", settings.site_id), values)
        if not updated:
            self.store.insert(SITE_SETTINGS, {"site_id": settings.site_id, **values})
        return self.get_site_settings(settings.site_id)

    # -- people ------------------------------------------------------------

    def _person(self, row: Row) -> Person:
        descriptor: np.ndarray | None = None
        stored = row.get("face_descriptor")
        if stored:
            try:
                descriptor = self.codec.decode(stored)
            except InvalidDescriptor as exc:
                logger.warning("Ignoring unreadable descriptor for person %s: %s", row.get("id"), exc)
        return Person(
            id=row["id"],
            site_id=row["site_id"],
            full_name=row["full_name"],
            ci=row["ci"],
            type=_enum_or_none(PersonType, row.get("type")) or PersonType.WORKER,
            contractor=row.get("contractor"),
            face_descriptor=descriptor,
            insurance_number=row.get("insurance_number"),
            insurance_expiry=as_date(row.get("insurance_expiry")),
            created_at=as_utc(row.get("created_at")),
            updated_at=as_utc(row.get("updated_at")),
        )

    def get_person(self, site_id: str, person_id: str) -> Person | None:
        rows = self.store.select(table(PEOPLE).eq("site_id", site_id).eq("id", person_id).take(1))
        return self._person(rows[0]) if rows else None

    def create_person(self, person: Person) -> Person:
        now = utcnow()
        row = self.store.insert(
            PEOPLE,
            {
                "id": person.id or new_id(),
                "site_id": person.site_id,
                "ci": person.ci,
                "full_name": person.full_name,
                "type": person.type.value,
                "contractor": person.contractor,
                "face_descriptor": (
                    self.codec.encode(person.face_descriptor) if person.face_descriptor is not None else None
                ),
                "insurance_number": person.insurance_number,
                "insurance_expiry": person.insurance_expiry,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self._person(row)

    def set_descriptor(self, site_id: str, person_id: str, descriptor: np.ndarray | None) -> Person | None:
        values = {
            "face_descriptor": self.codec.encode(descriptor) if descriptor is not None else None,
            "updated_at": utcnow(),
        }
        rows = self.store.update(table(PEOPLE).eq("site_id", site_id).eq("id", person_id), values)
        return self._person(rows[0]) if rows else None

    def set_insurance(
        self, site_id: str, person_id: str, number: str | None, expiry: date | None
    ) -> Person | None:
        values = {"insurance_number": number, "insurance_expiry": expiry, "updated_at": utcnow()}
        rows = self.store.update(table(PEOPLE).eq("site_id", site_id).eq("id", person_id), values)
        return self._person(rows[0]) if rows else None

    def delete_person(self, site_id: str, person_id: str) -> Person | None:
        """Remove the person and their favourite markers. Access logs are never removed."""
        self.store.delete(table(FAVORITES).eq("site_id", site_id).eq("person_id", person_id))
        rows = self.store.delete(table(PEOPLE).eq("site_id", site_id).eq("id", person_id))
        return self._person(rows[0]) if rows else None

    def insurance_expiring(self, site_id: str, until: date) -> list[Person]:
        query = (
            table(PEOPLE)
            .eq("site_id", site_id)
            .eq("type", PersonType.WORKER.value)
            .not_null("insurance_expiry")
            .lte("insurance_expiry", until)
            .order("insurance_expiry")
        )
        return [self._person(row) for row in self.store.select(query)]

    def people_with_descriptors(self, site_id: str) -> list[Person]:
        query = table(PEOPLE).eq("site_id", site_id).not_null("face_descriptor").order("created_at")
        return [self._person(row) for row in self.store.select(query)]

    def people_by_ids(self, site_id: str, person_ids: Iterable[str]) -> list[Person]:
        ids = list(dict.fromkeys(person_ids))
        if not ids:
            return []
        rows = self.store.select(table(PEOPLE).eq("site_id", site_id).in_("id", ids))
        return [self._person(row) for row in rows]

    def find_people_by_ci(self, site_id: str, ci: str, limit: int = 20) -> list[Person]:
        rows = self.store.select(table(PEOPLE).eq("site_id", site_id).eq("ci", ci).take(limit))
        return [self._person(row) for row in rows]

    def find_people_by_name(self, site_id: str, text: str, limit: int = 20) -> list[Person]:
        query = table(PEOPLE).eq("site_id", site_id).ilike("full_name", text).order("full_name").take(limit)
        return [self._person(row) for row in self.store.select(query)]

    # -- access sessions ---------------------------------------------------

    @staticmethod
    def _session(row: Row) -> AccessSession:
        return AccessSession(
            id=row["id"],
            site_id=row["site_id"],
            person_id=row["person_id"],
            entry_at=as_utc(row["entry_at"]),
            exit_at=as_utc(row.get("exit_at")),
            observations=row.get("observations"),
            entry_by_user_id=row.get("entry_by_user_id"),
            exit_by_user_id=row.get("exit_by_user_id"),
            ci_snapshot=row.get("ci_snapshot"),
            name_snapshot=row.get("name_snapshot"),
            type_snapshot=_enum_or_none(PersonType, row.get("type_snapshot")),
            contractor_snapshot=row.get("contractor_snapshot"),
            voided_at=as_utc(row.get("voided_at")),
            voided_by_user_id=row.get("voided_by_user_id"),
            void_reason=row.get("void_reason"),
            created_at=as_utc(row.get("created_at")),
        )

    @staticmethod
    def _open(site_id: str) -> Query:
        return table(ACCESS_LOGS).eq("site_id", site_id).is_null("exit_at").is_null("voided_at")

    def get_session(self, site_id: str, session_id: str) -> AccessSession | None:
        rows = self.store.select(table(ACCESS_LOGS).eq("site_id", site_id).eq("id", session_id).take(1))
        return self._session(rows[0]) if rows else None

    def has_access_logs(self, site_id: str, person_id: str) -> bool:
        query = table(ACCESS_LOGS).eq("site_id", site_id).eq("person_id", person_id).take(1)
        return bool(self.store.select(query))

    def open_sessions(self, site_id: str, person_id: str | None = None) -> list[AccessSession]:
        query = self._open(site_id)
        if person_id is not None:
            query = query.eq("person_id", person_id)
        return [self._session(row) for row in self.store.select(query.order("entry_at"))]

    def recent_entries(self, site_id: str, person_id: str, since: datetime) -> list[AccessSession]:
        query = (
            table(ACCESS_LOGS)
            .eq("site_id", site_id)
            .eq("person_id", person_id)
            .is_null("voided_at")
            .gte("entry_at", since)
            .order("entry_at", descending=True)
        )
        return [self._session(row) for row in self.store.select(query)]

    def recent_exits(self, site_id: str, person_id: str, since: datetime) -> list[AccessSession]:
        query = (
            table(ACCESS_LOGS)
            .eq("site_id", site_id)
            .eq("person_id", person_id)
            .is_null("voided_at")
            .gte("exit_at", since)
            .order("exit_at", descending=True)
        )
        return [self._session(row) for row in self.store.select(query)]

    def sessions_since(self, site_id: str, since: datetime) -> list[AccessSession]:
        query = table(ACCESS_LOGS).eq("site_id", site_id).is_null("voided_at").gte("entry_at", since)
        return [self._session(row) for row in self.store.select(query.order("entry_at"))]

    def recent_sessions(self, site_id: str, limit: int = 50) -> list[AccessSession]:
        query = table(ACCESS_LOGS).eq("site_id", site_id).order("entry_at", descending=True).take(limit)
        return [self._session(row) for row in self.store.select(query)]

    def search_sessions(self, site_id: str, text: str, limit: int = 50) -> list[AccessSession]:
        by_ci = table(ACCESS_LOGS).eq("site_id", site_id).eq("ci_snapshot", text)
        by_name = table(ACCESS_LOGS).eq("site_id", site_id).ilike("name_snapshot", text)
        seen: dict[str, AccessSession] = {}
        for query in (by_ci, by_name):
            for row in self.store.select(query.order("entry_at", descending=True).take(limit)):
                seen.setdefault(row["id"], self._session(row))
        ordered = sorted(seen.values(), key=lambda s: s.entry_at, reverse=True)
        return ordered[:limit]

    def create_session(self, session: AccessSession) -> AccessSession:
        row = session_to_row(session)
        row["id"] = row["id"] or new_id()
        row["created_at"] = row["created_at"] or utcnow()
        return self._session(self.store.insert(ACCESS_LOGS, row))

    def close_open_session(
        self,
        site_id: str,
        session_id: str,
        exit_at: datetime,
        exit_by_user_id: str | None,
    ) -> AccessSession | None:
        """Close the session only if it is still open; None when it was closed or voided meanwhile."""
        query = self._open(site_id).eq("id", session_id)
        rows = self.store.update(query, {"exit_at": exit_at, "exit_by_user_id": exit_by_user_id})
        return self._session(rows[0]) if rows else None

    def void_session(
        self,
        site_id: str,
        session_id: str,
        voided_at: datetime,
        voided_by_user_id: str | None,
        reason: str,
    ) -> AccessSession | None:
        query = table(ACCESS_LOGS).eq("site_id", site_id).eq("id", session_id).is_null("voided_at")
        values = {"voided_at": voided_at, "voided_by_user_id": voided_by_user_id, "void_reason": reason}
        rows = self.store.update(query, values)
        return self._session(rows[0]) if rows else None

    def update_session(self, site_id: str, session_id: str, values: Row) -> AccessSession | None:
        query = table(ACCESS_LOGS).eq("site_id", site_id).eq("id", session_id).is_null("voided_at")
        rows = self.store.update(query, values)
        return self._session(rows[0]) if rows else None

    # -- favorites ---------------------------------------------------------

    @staticmethod
    def _favorite(row: Row) -> Favorite:
        return Favorite(
            id=row["id"],
            site_id=row["site_id"],
            person_id=row["person_id"],
            created_at=as_utc(row.get("created_at")),
        )

    def list_favorites(self, site_id: str) -> list[Favorite]:
        query = table(FAVORITES).eq("site_id", site_id).order("created_at")
        return [self._favorite(row) for row in self.store.select(query)]

    def get_favorite(self, site_id: str, person_id: str) -> Favorite | None:
        rows = self.store.select(table(FAVORITES).eq("site_id", site_id).eq("person_id", person_id).take(1))
        return self._favorite(rows[0]) if rows else None

    def add_favorite(self, site_id: str, person_id: str) -> Favorite:
        row = self.store.insert(
            FAVORITES, {"id": new_id(), "site_id": site_id, "person_id": person_id, "created_at": utcnow()}
        )
        return self._favorite(row)

    def remove_favorite(self, site_id: str, person_id: str) -> bool:
        return bool(self.store.delete(table(FAVORITES).eq("site_id", site_id).eq("person_id", person_id)))

    # -- audit -------------------------------------------------------------

    @staticmethod
    def _audit(row: Row) -> AuditEvent:
        return AuditEvent(
            id=row["id"],
            site_id=row["site_id"],
            action=row["action"],
            user_id=row.get("user_id"),
            role_snapshot=_enum_or_none(Role, row.get("role_snapshot")),
            entity_type=row.get("entity_type"),
            entity_id=row.get("entity_id"),
            before=row.get("before"),
            after=row.get("after"),
            note=row.get("note"),
            created_at=as_utc(row.get("created_at")),
        )

    def add_audit_event(self, event: AuditEvent) -> AuditEvent:
        row = self.store.insert(
            AUDIT_EVENTS,
            {
                "id": event.id or new_id(),
                "site_id": event.site_id,
                "user_id": event.user_id,
                "role_snapshot": event.role_snapshot.value if event.role_snapshot else None,
                "action": event.action,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "before": event.before,
                "after": event.after,
                "note": event.note,
                "created_at": event.created_at or utcnow(),
            },
        )
        return self._audit(row)

    def list_audit_events(self, site_id: str, limit: int = 200) -> list[AuditEvent]:
        query = table(AUDIT_EVENTS).eq("site_id", site_id).order("created_at", descending=True).take(limit)
        return [self._audit(row) for row in self.store.select(query)]
