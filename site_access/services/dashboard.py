from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..store.repository import AccessRepository, utcnow
from ..types import AccessSession, PersonType

NO_CONTRACTOR = "Sin contratista"
INSIDE_LIST_LIMIT = 50


@dataclass
class InsideEntry:
    session_id: str
    person_id: str
    full_name: str
    ci: str
    contractor: str | None
    type: PersonType | None
    entry_at: datetime
    hours: float
    status: str


@dataclass
class ContractorStat:
    contractor: str
    inside: int = 0
    entries_today: int = 0


@dataclass
class InsuranceWarning:
    person_id: str
    full_name: str
    ci: str
    contractor: str | None
    insurance_number: str | None
    insurance_expiry: date
    days_left: int

    @property
    def expired(self) -> bool:
        return self.days_left < 0


@dataclass
class DashboardSnapshot:
    site_id: str
    generated_at: datetime
    inside_now: int
    entries_today: int
    exits_today: int
    warn_count: int
    crit_count: int
    inside: list[InsideEntry] = field(default_factory=list)
    contractors: list[ContractorStat] = field(default_factory=list)
    insurance_warnings: list[InsuranceWarning] = field(default_factory=list)


def hours_status(hours: float, warn_hours: float, crit_hours: float) -> str:
    if hours >= crit_hours:
        return "crit"
    if hours >= warn_hours:
        return "warn"
    return "ok"


def _zone(tz_name: str):
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def start_of_day(now: datetime, tz_name: str) -> datetime:
    tz = _zone(tz_name)
    local = now.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz).astimezone(timezone.utc)


class DashboardService:
    def __init__(self, repo: AccessRepository, default_timezone: str = "UTC") -> None:
        self.repo = repo
        self.default_timezone = default_timezone

    def snapshot(self, site_id: str, now: datetime | None = None) -> DashboardSnapshot:
        now = now or utcnow()
        settings = self.repo.get_site_settings(site_id)
        site = self.repo.get_site(site_id)
        tz_name = site.timezone if site else self.default_timezone
        day_start = start_of_day(now, tz_name)
        local_today = now.astimezone(_zone(tz_name)).date()

        inside = [
            self._inside_entry(session, now, settings.warn_hours, settings.crit_hours)
            for session in self.repo.open_sessions(site_id)
        ]
        inside.sort(key=lambda item: item.hours, reverse=True)

        today = self.repo.sessions_since(site_id, day_start)

        contractors: dict[str, ContractorStat] = {}
        for entry in inside:
            name = entry.contractor or NO_CONTRACTOR
            contractors.setdefault(name, ContractorStat(contractor=name)).inside += 1
        for session in today:
            name = session.contractor_snapshot or NO_CONTRACTOR
            contractors.setdefault(name, ContractorStat(contractor=name)).entries_today += 1

        return DashboardSnapshot(
            site_id=site_id,
            generated_at=now,
            inside_now=len(inside),
            entries_today=len(today),
            exits_today=sum(1 for session in today if session.exit_at is not None),
            warn_count=sum(1 for entry in inside if entry.status == "warn"),
            crit_count=sum(1 for entry in inside if entry.status == "crit"),
            inside=inside[:INSIDE_LIST_LIMIT],
            contractors=sorted(contractors.values(), key=lambda stat: stat.inside, reverse=True),
            insurance_warnings=self.insurance_warnings(site_id, local_today, settings.seguro_warn_days),
        )

    @staticmethod
    def _inside_entry(session: AccessSession, now: datetime, warn_hours: float, crit_hours: float) -> InsideEntry:
        hours = max(0.0, (now - session.entry_at).total_seconds() / 3600.0)
        return InsideEntry(
            session_id=session.id,
            person_id=session.person_id,
            full_name=session.name_snapshot or "",
            ci=session.ci_snapshot or "",
            contractor=session.contractor_snapshot,
            type=session.type_snapshot,
            entry_at=session.entry_at,
            hours=hours,
            status=hours_status(hours, warn_hours, crit_hours),
        )

    def insurance_warnings(self, site_id: str, today: date, warn_days: int) -> list[InsuranceWarning]:
        """Workers whose insurance has lapsed or lapses within `warn_days` of `today`."""
        until = today + timedelta(days=warn_days)
        return [
            InsuranceWarning(
                person_id=person.id,
                full_name=person.full_name,
                ci=person.ci,
                contractor=person.contractor,
                insurance_number=person.insurance_number,
                insurance_expiry=person.insurance_expiry,
                days_left=(person.insurance_expiry - today).days,
            )
            for person in self.repo.insurance_expiring(site_id, until)
        ]
