from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..exceptions import PersonNotFound
from ..store.repository import AccessRepository, utcnow
from ..types import OperationContext, Person, PersonType
from .dashboard import hours_status
from .reconciler import Clock

logger = logging.getLogger("site_access.favorites")


@dataclass
class FavoriteStatus:
    favorite_id: str
    person_id: str
    full_name: str
    ci: str
    contractor: str | None
    type: PersonType
    inside: bool
    open_session_id: str | None = None
    entry_at: datetime | None = None
    hours: float | None = None
    status: str | None = None


class FavoritesService:
    """Per-site shortlist of people the gate handles often, with live inside status."""

    def __init__(self, repo: AccessRepository, clock: Clock = utcnow) -> None:
        self.repo = repo
        self.clock = clock

    def list(self, site_id: str) -> list[FavoriteStatus]:
        favorites = self.repo.list_favorites(site_id)
        if not favorites:
            return []

        people = {person.id: person for person in self.repo.people_by_ids(site_id, [f.person_id for f in favorites])}
        # Sessions come back oldest first, so the most recent open one wins.
        open_by_person = {session.person_id: session for session in self.repo.open_sessions(site_id)}

        settings = self.repo.get_site_settings(site_id)
        now = self.clock()
        result: list[FavoriteStatus] = []
        for favorite in favorites:
            person = people.get(favorite.person_id)
            if person is None:
                continue
            item = FavoriteStatus(
                favorite_id=favorite.id,
                person_id=person.id,
                full_name=person.full_name,
                ci=person.ci,
                contractor=person.contractor,
                type=person.type,
                inside=False,
            )
            session = open_by_person.get(person.id)
            if session is not None:
                item.inside = True
                item.open_session_id = session.id
                item.entry_at = session.entry_at
                item.hours = max(0.0, (now - session.entry_at).total_seconds() / 3600.0)
                item.status = hours_status(item.hours, settings.warn_hours, settings.crit_hours)
            result.append(item)
        return result

    def add(self, ctx: OperationContext, person_id: str) -> bool:
        """Mark a person as favourite. Returns False when it already was one."""
        self._person(ctx.site_id, person_id)
        if self.repo.get_favorite(ctx.site_id, person_id) is not None:
            return False
        self.repo.add_favorite(ctx.site_id, person_id)
        logger.info("Person %s added to favourites at site %s", person_id, ctx.site_id)
        return True

    def remove(self, ctx: OperationContext, person_id: str) -> bool:
        removed = self.repo.remove_favorite(ctx.site_id, person_id)
        if removed:
            logger.info("Person %s removed from favourites at site %s", person_id, ctx.site_id)
        return removed

    def _person(self, site_id: str, person_id: str) -> Person:
        person = self.repo.get_person(site_id, person_id)
        if person is None:
            raise PersonNotFound(f"Person {person_id} not found at site {site_id}.")
        return person
