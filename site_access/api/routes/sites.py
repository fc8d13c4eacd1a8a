from __future__ import annotations

from fastapi import APIRouter, Depends

from ...core.config import get_settings
from ...schemas.auth import CurrentPrincipal
from ...schemas.site import SiteCreate, SiteResponse, SiteSettingsResponse, SiteSettingsUpdate
from ...services import AccessServices
from ..deps import ANY_STAFF, SUPERVISOR_ONLY, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites", tags=["sites"])


@router.post("", response_model=SiteResponse)
def create_site(
    payload: SiteCreate,
    _principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    site = services.sites.create(payload.name, payload.timezone or get_settings().default_timezone)
    return SiteResponse.model_validate(site)


@router.get("/{site_id}/settings", response_model=SiteSettingsResponse)
def get_site_settings(
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    return SiteSettingsResponse.model_validate(services.sites.get_settings(site_id))


@router.put("/{site_id}/settings", response_model=SiteSettingsResponse)
def update_site_settings(
    payload: SiteSettingsUpdate,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*SUPERVISOR_ONLY)),
    services: AccessServices = Depends(services_dep),
):
    saved = services.sites.update_settings(
        operation_context(site_id, principal),
        warn_hours=payload.warn_hours,
        crit_hours=payload.crit_hours,
        seguro_warn_days=payload.seguro_warn_days,
    )
    return SiteSettingsResponse.model_validate(saved)
