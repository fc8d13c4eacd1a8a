from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from ...schemas.auth import CurrentPrincipal
from ...schemas.person import DescriptorUpdate, InsuranceUpdate, PersonCreate, PersonResponse, PersonSearchItem
from ...services import AccessServices
from ..deps import ANY_STAFF, SUPERVISOR_ONLY, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/people", tags=["people"])


@router.post("", response_model=PersonResponse)
def register_person(
    payload: PersonCreate,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    person = services.people.register(
        operation_context(site_id, principal),
        full_name=payload.full_name,
        ci=payload.ci,
        person_type=payload.type,
        contractor=payload.contractor,
        descriptor=payload.descriptor,
        insurance_number=payload.insurance_number,
        insurance_expiry=payload.insurance_expiry,
    )
    return PersonResponse.model_validate(person)


@router.get("/search", response_model=list[PersonSearchItem])
def search_people(
    q: str = Query(default="", max_length=120),
    inside_only: bool = False,
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    results = services.search.search_inside(site_id, q) if inside_only else services.search.search(site_id, q)
    return [PersonSearchItem.model_validate(result) for result in results]


@router.get("/{person_id}", response_model=PersonResponse)
def get_person(
    person_id: str,
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    return PersonResponse.model_validate(services.people.get(site_id, person_id))


@router.delete("/{person_id}", response_model=PersonResponse)
def delete_person(
    person_id: str,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    person = services.people.delete(operation_context(site_id, principal), person_id)
    return PersonResponse.model_validate(person)


@router.put("/{person_id}/insurance", response_model=PersonResponse)
def set_person_insurance(
    person_id: str,
    payload: InsuranceUpdate,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    person = services.people.set_insurance(
        operation_context(site_id, principal),
        person_id,
        insurance_number=payload.insurance_number,
        insurance_expiry=payload.insurance_expiry,
    )
    return PersonResponse.model_validate(person)


@router.put("/{person_id}/descriptor", response_model=PersonResponse)
async def set_person_descriptor(
    person_id: str,
    payload: DescriptorUpdate,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    ctx = operation_context(site_id, principal)
    if payload.descriptor is not None:
        descriptor = payload.descriptor
    else:
        descriptor = await run_in_threadpool(services.recognition.describe_image, payload.image)
    person = await run_in_threadpool(services.people.set_descriptor, ctx, person_id, descriptor)
    return PersonResponse.model_validate(person)
