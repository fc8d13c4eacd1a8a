from __future__ import annotations

from fastapi import APIRouter, Depends

from ...exceptions import DuplicateSubmission
from ...schemas.access import EntryRequest, ExitRequest, TransitionResponse
from ...schemas.auth import CurrentPrincipal
from ...services import AccessServices
from ...types import AccessAction, TransitionResult
from ..deps import ANY_STAFF, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/access", tags=["access"])


def duplicate_result(action: AccessAction, exc: DuplicateSubmission) -> TransitionResponse:
    return TransitionResponse(action=action, accepted=False, outcome="duplicate", message=str(exc))


@router.post("/entry", response_model=TransitionResponse)
def register_entry(
    payload: EntryRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    ctx = operation_context(site_id, principal)
    try:
        result: TransitionResult = services.reconciler.enter(ctx, payload.person_id, observations=payload.observations)
    except DuplicateSubmission as exc:
        return duplicate_result(AccessAction.ENTRY, exc)
    return TransitionResponse.model_validate(result)


@router.post("/exit", response_model=TransitionResponse)
def register_exit(
    payload: ExitRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    ctx = operation_context(site_id, principal)
    try:
        result = services.reconciler.exit(ctx, payload.person_id, session_id=payload.session_id)
    except DuplicateSubmission as exc:
        return duplicate_result(AccessAction.EXIT, exc)
    return TransitionResponse.model_validate(result)
