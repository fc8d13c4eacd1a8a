from __future__ import annotations

from fastapi import APIRouter, Depends

from ...schemas.auth import CurrentPrincipal
from ...schemas.favorite import FavoriteItem, FavoriteToggleResponse
from ...services import AccessServices
from ..deps import ANY_STAFF, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/favorites", tags=["favorites"])


@router.get("", response_model=list[FavoriteItem])
def list_favorites(
    site_id: str = Depends(require_site),
    _principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    return [FavoriteItem.model_validate(item) for item in services.favorites.list(site_id)]


@router.put("/{person_id}", response_model=FavoriteToggleResponse)
def add_favorite(
    person_id: str,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    changed = services.favorites.add(operation_context(site_id, principal), person_id)
    return FavoriteToggleResponse(person_id=person_id, favorite=True, changed=changed)


@router.delete("/{person_id}", response_model=FavoriteToggleResponse)
def remove_favorite(
    person_id: str,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    changed = services.favorites.remove(operation_context(site_id, principal), person_id)
    return FavoriteToggleResponse(person_id=person_id, favorite=False, changed=changed)
