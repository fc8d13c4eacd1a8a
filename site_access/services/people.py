from __future__ import annotations

import logging
from datetime import date

import numpy as np

from ..core.security import parse_descriptor
from ..exceptions import NoFaceDetected, PersonNotFound, RecordInUse, ValidationFailed
from ..store.repository import AccessRepository, new_id
from ..types import OperationContext, Person, PersonType
from .audit import AuditTrail
from .embedding import EmbeddingProvider

logger = logging.getLogger("site_access.people")


class PeopleService:
    def __init__(self, repo: AccessRepository, audit: AuditTrail, descriptor_length: int | None = None) -> None:
        self.repo = repo
        self.audit = audit
        self.descriptor_length = descriptor_length

    def get(self, site_id: str, person_id: str) -> Person:
        person = self.repo.get_person(site_id, person_id)
        if person is None:
            raise PersonNotFound(f"Person {person_id} not found at site {site_id}.")
        return person

    def register(
        self,
        ctx: OperationContext,
        full_name: str,
        ci: str,
        person_type: PersonType | str,
        contractor: str | None = None,
        descriptor: list[float] | np.ndarray | None = None,
        insurance_number: str | None = None,
        insurance_expiry: date | None = None,
    ) -> Person:
        full_name = (full_name or "").strip()
        ci = (ci or "").strip()
        if not full_name:
            raise ValidationFailed("Full name is required.")
        if not ci:
            raise ValidationFailed("CI is required.")
        try:
            person_type = PersonType(person_type)
        except ValueError as exc:
            raise ValidationFailed(f"Unknown person type '{person_type}'.") from exc
        insurance_number = (insurance_number or "").strip() or None
        if person_type != PersonType.WORKER and (insurance_number or insurance_expiry):
            raise ValidationFailed("Insurance details apply to workers only.")

        if self.repo.find_people_by_ci(ctx.site_id, ci, limit=1):
            raise ValidationFailed(f"A person with CI {ci} is already registered at this site.")

        vector = parse_descriptor(descriptor, self.descriptor_length) if descriptor is not None else None
        person = self.repo.create_person(
            Person(
                id=new_id(),
                site_id=ctx.site_id,
                full_name=full_name,
                ci=ci,
                type=person_type,
                contractor=(contractor or "").strip() or None,
                face_descriptor=vector,
                insurance_number=insurance_number,
                insurance_expiry=insurance_expiry,
            )
        )
        logger.info("Registered %s %s (%s) at site %s", person.type.value, person.full_name, person.id, ctx.site_id)
        self.audit.record(
            ctx,
            "PERSON_CREATED",
            entity_type="person",
            entity_id=person.id,
            after={
                "full_name": person.full_name,
                "ci": person.ci,
                "type": person.type.value,
                "contractor": person.contractor,
                "has_descriptor": person.has_descriptor,
                **_insurance_json(person),
            },
        )
        return person

    def set_descriptor(
        self,
        ctx: OperationContext,
        person_id: str,
        descriptor: list[float] | np.ndarray,
    ) -> Person:
        vector = parse_descriptor(descriptor, self.descriptor_length)
        before = self.get(ctx.site_id, person_id)
        person = self.repo.set_descriptor(ctx.site_id, person_id, vector)
        if person is None:
            raise PersonNotFound(f"Person {person_id} not found at site {ctx.site_id}.")

        logger.info("Face descriptor %s for person %s", "replaced" if before.has_descriptor else "set", person_id)
        self.audit.record(ctx, "PERSON_DESCRIPTOR_SET", entity_type="person", entity_id=person_id)
        return person

    def enroll_from_frame(
        self,
        ctx: OperationContext,
        person_id: str,
        frame_bgr: np.ndarray,
        provider: EmbeddingProvider,
    ) -> Person:
        descriptor = provider.extract(frame_bgr)
        if descriptor is None:
            raise NoFaceDetected("No face detected in the enrollment photo.")
        return self.set_descriptor(ctx, person_id, descriptor)

    def set_insurance(
        self,
        ctx: OperationContext,
        person_id: str,
        insurance_number: str | None,
        insurance_expiry: date | None,
    ) -> Person:
        before = self.get(ctx.site_id, person_id)
        if before.type != PersonType.WORKER:
            raise ValidationFailed("Insurance details apply to workers only.")

        number = (insurance_number or "").strip() or None
        person = self.repo.set_insurance(ctx.site_id, person_id, number, insurance_expiry)
        if person is None:
            raise PersonNotFound(f"Person {person_id} not found at site {ctx.site_id}.")

        self.audit.record(
            ctx,
            "PERSON_INSURANCE_SET",
            entity_type="person",
            entity_id=person_id,
            before=_insurance_json(before),
            after=_insurance_json(person),
        )
        return person

    def delete(self, ctx: OperationContext, person_id: str) -> Person:
        """Hard-delete a person who has never been through the gate.

        Anyone with access logs, voided ones included, keeps their record so the
        history stays attributable; such deletes fail with ``RecordInUse``.
        """
        person = self.get(ctx.site_id, person_id)
        if self.repo.has_access_logs(ctx.site_id, person_id):
            raise RecordInUse(f"{person.full_name} has access history and cannot be deleted.")

        removed = self.repo.delete_person(ctx.site_id, person_id)
        if removed is None:
            raise PersonNotFound(f"Person {person_id} not found at site {ctx.site_id}.")

        logger.info("Deleted person %s (%s) at site %s", person.full_name, person_id, ctx.site_id)
        self.audit.record(
            ctx,
            "PERSON_DELETED",
            entity_type="person",
            entity_id=person_id,
            before={"full_name": person.full_name, "ci": person.ci, "type": person.type.value},
        )
        return removed


def _insurance_json(person: Person) -> dict:
    return {
        "insurance_number": person.insurance_number,
        "insurance_expiry": person.insurance_expiry.isoformat() if person.insurance_expiry else None,
    }
