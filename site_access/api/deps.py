from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.security import safe_decode_token
from ..schemas.auth import CurrentPrincipal
from ..services import AccessServices, get_services
from ..types import OperationContext, Role

bearer_scheme = HTTPBearer(auto_error=False)


def services_dep() -> AccessServices:
    return get_services()


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentPrincipal:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token.")
    payload = safe_decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token.")
    return CurrentPrincipal(subject=str(payload.get("sub", "")), role=str(payload.get("role", "")))


def require_roles(*allowed_roles: str) -> Callable[[CurrentPrincipal], CurrentPrincipal]:
    allowed = set(allowed_roles)

    def _checker(principal: CurrentPrincipal = Depends(get_current_principal)) -> CurrentPrincipal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role.")
        return principal

    return _checker


ANY_STAFF = (Role.GUARD.value, Role.SUPERVISOR.value)
SUPERVISOR_ONLY = (Role.SUPERVISOR.value,)


def operation_context(site_id: str, principal: CurrentPrincipal) -> OperationContext:
    try:
        role = Role(principal.role)
    except ValueError:
        role = None
    return OperationContext(site_id=site_id, actor_id=principal.subject or None, actor_role=role)


def require_site(site_id: str, services: AccessServices = Depends(services_dep)) -> str:
    if services.repo.get_site(site_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown site '{site_id}'.")
    return site_id
