from __future__ import annotations

from ..store.repository import AccessRepository
from ..types import PersonSearchResult

SEARCH_LIMIT = 20


class PersonSearch:
    """Manual fallback lookup by civil ID (exact) or name (substring)."""

    def __init__(self, repo: AccessRepository, limit: int = SEARCH_LIMIT) -> None:
        self.repo = repo
        self.limit = limit

    def search(self, site_id: str, query_text: str) -> list[PersonSearchResult]:
        text = (query_text or "").strip()
        if not text:
            return []

        people = {p.id: p for p in self.repo.find_people_by_ci(site_id, text, limit=self.limit)}
        for person in self.repo.find_people_by_name(site_id, text, limit=self.limit):
            people.setdefault(person.id, person)

        open_by_person: dict[str, str] = {}
        for session in self.repo.open_sessions(site_id):
            open_by_person[session.person_id] = session.id

        return [
            PersonSearchResult(
                person=person,
                inside=person.id in open_by_person,
                open_session_id=open_by_person.get(person.id),
            )
            for person in list(people.values())[: self.limit]
        ]

    def search_inside(self, site_id: str, query_text: str) -> list[PersonSearchResult]:
        return [result for result in self.search(site_id, query_text) if result.inside]
