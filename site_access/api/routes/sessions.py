from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...schemas.access import ReasonRequest, SessionEditRequest, SessionResponse, TransitionResponse
from ...schemas.auth import CurrentPrincipal
from ...services import AccessServices
from ..deps import ANY_STAFF, SUPERVISOR_ONLY, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionResponse])
def list_sessions(
    q: str = Query(default="", max_length=120),
    open_only: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    text = q.strip()
    if open_only:
        rows = list(reversed(services.repo.open_sessions(site_id)))[:limit]
    elif text:
        rows = services.repo.search_sessions(site_id, text, limit=limit)
    else:
        rows = services.repo.recent_sessions(site_id, limit=limit)
    return [SessionResponse.model_validate(row) for row in rows]


@router.post("/{session_id}/force-exit", response_model=TransitionResponse)
def force_exit(
    session_id: str,
    payload: ReasonRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    result = services.reconciler.force_exit(operation_context(site_id, principal), session_id, payload.reason)
    return TransitionResponse.model_validate(result)


@router.post("/{session_id}/void", response_model=SessionResponse)
def void_session(
    session_id: str,
    payload: ReasonRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    voided = services.reconciler.void(operation_context(site_id, principal), session_id, payload.reason)
    return SessionResponse.model_validate(voided)


@router.patch("/{session_id}", response_model=SessionResponse)
def edit_session(
    session_id: str,
    payload: SessionEditRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    updated = services.reconciler.edit(
        operation_context(site_id, principal),
        session_id,
        payload.reason,
        entry_at=payload.entry_at,
        exit_at=payload.exit_at,
        observations=payload.observations,
    )
    return SessionResponse.model_validate(updated)
