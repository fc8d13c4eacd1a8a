from __future__ import annotations

import logging

import numpy as np

from ..store.repository import AccessRepository
from ..types import AccessAction, Candidate, CandidatePool, Person

logger = logging.getLogger("site_access.candidates")


class CandidatePoolLoader:
    def __init__(self, repo: AccessRepository, descriptor_length: int | None = None) -> None:
        self.repo = repo
        self.descriptor_length = descriptor_length

    def load(self, site_id: str, action: AccessAction) -> CandidatePool:
        if action == AccessAction.ENTRY:
            return self._entry_pool(site_id)
        return self._exit_pool(site_id)

    def _usable(self, person: Person) -> bool:
        descriptor = person.face_descriptor
        if descriptor is None:
            return False
        if descriptor.ndim != 1 or not np.all(np.isfinite(descriptor)):
            logger.warning("Skipping malformed descriptor for person %s", person.id)
            return False
        if self.descriptor_length is not None and descriptor.size != self.descriptor_length:
            logger.warning(
                "Skipping descriptor of length %d for person %s (expected %d)",
                descriptor.size,
                person.id,
                self.descriptor_length,
            )
            return False
        return True

    def _entry_pool(self, site_id: str) -> CandidatePool:
        people = self.repo.people_with_descriptors(site_id)
        candidates = [Candidate(p.id, p.face_descriptor) for p in people if self._usable(p)]
        logger.debug("Entry pool for site %s: %d candidates", site_id, len(candidates))
        return CandidatePool(site_id=site_id, action=AccessAction.ENTRY, candidates=candidates)

    def _exit_pool(self, site_id: str) -> CandidatePool:
        open_sessions: dict[str, str] = {}
        for session in self.repo.open_sessions(site_id):
            # Pool order is first-seen; the mapped session is the most recent open row.
            open_sessions[session.person_id] = session.id

        people = {p.id: p for p in self.repo.people_by_ids(site_id, open_sessions)}
        candidates = [
            Candidate(person_id, people[person_id].face_descriptor)
            for person_id in open_sessions
            if person_id in people and self._usable(people[person_id])
        ]
        logger.debug("Exit pool for site %s: %d candidates", site_id, len(candidates))
        return CandidatePool(
            site_id=site_id,
            action=AccessAction.EXIT,
            candidates=candidates,
            open_sessions={c.person_id: open_sessions[c.person_id] for c in candidates},
        )
