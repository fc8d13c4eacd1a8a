from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(160))
    timezone: Mapped[str] = mapped_column(String(64), default="America/La_Paz")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SiteSettings(Base):
    __tablename__ = "site_settings"

    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), primary_key=True)
    warn_hours: Mapped[float] = mapped_column(Float, default=10.0)
    crit_hours: Mapped[float] = mapped_column(Float, default=12.0)
    seguro_warn_days: Mapped[int] = mapped_column(Integer, default=30)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class Person(Base):
    __tablename__ = "people"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), index=True)
    ci: Mapped[str] = mapped_column(String(64), index=True)
    full_name: Mapped[str] = mapped_column(String(160), index=True)
    type: Mapped[str] = mapped_column(String(16), default="worker")
    contractor: Mapped[str | None] = mapped_column(String(160), nullable=True)
    face_descriptor: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Worker profile: social insurance policy tracked against the site warning window.
    insurance_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    insurance_expiry: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    access_logs: Mapped[list["AccessLog"]] = relationship(back_populates="person", passive_deletes="all")


class AccessLog(Base):
    __tablename__ = "access_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), index=True)
    # RESTRICT keeps history: a person referenced by logs cannot be deleted.
    person_id: Mapped[str] = mapped_column(ForeignKey("people.id", ondelete="RESTRICT"), index=True)
    entry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    exit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    observations: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    exit_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ci_snapshot: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name_snapshot: Mapped[str | None] = mapped_column(String(160), nullable=True)
    type_snapshot: Mapped[str | None] = mapped_column(String(16), nullable=True)
    contractor_snapshot: Mapped[str | None] = mapped_column(String(160), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    person: Mapped[Person] = relationship(back_populates="access_logs")


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("site_id", "person_id", name="uq_favorites_site_person"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), index=True)
    person_id: Mapped[str] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role_snapshot: Mapped[str | None] = mapped_column(String(16), nullable=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


TABLES: dict[str, type[Base]] = {
    model.__tablename__: model
    for model in (Site, SiteSettings, Person, AccessLog, Favorite, AuditEvent)
}
