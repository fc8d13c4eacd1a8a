from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...schemas.audit import AuditEventResponse
from ...schemas.auth import CurrentPrincipal
from ...services import AccessServices
from ..deps import SUPERVISOR_ONLY, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/audit", tags=["audit"])


@router.get("", response_model=list[AuditEventResponse])
def list_audit_events(
    limit: int = Query(default=200, ge=1, le=1000),
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    return [AuditEventResponse.model_validate(event) for event in services.audit.list(site_id, limit=limit)]
