from __future__ import annotations

from fastapi import APIRouter, Depends

from ...schemas.auth import CurrentPrincipal
from ...schemas.dashboard import DashboardResponse
from ...services import AccessServices
from ..deps import ANY_STAFF, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardResponse)
def dashboard(
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    return DashboardResponse.model_validate(services.dashboard.snapshot(site_id))
