from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from ...exceptions import NoCandidatesAvailable, NoFaceDetected, NoMatchFound
from ...schemas.access import TransitionResponse
from ...schemas.auth import CurrentPrincipal
from ...schemas.person import PersonResponse
from ...schemas.recognition import IdentifyResponse, RecognitionRequest, ScanResponse
from ...services import AccessServices
from ...types import Identification
from ..deps import ANY_STAFF, operation_context, require_roles, require_site, services_dep

router = APIRouter(prefix="/sites/{site_id}/recognitions", tags=["recognitions"])

# Expected capture outcomes, answered with matched=false instead of an error status.
UNMATCHED = (NoFaceDetected, NoCandidatesAvailable, NoMatchFound)


def _identified(identification: Identification) -> dict:
    return {
        "matched": True,
        "outcome": "matched",
        "person": PersonResponse.model_validate(identification.person),
        "distance": identification.match.distance,
        "inside": identification.inside,
        "open_session_id": identification.open_session_id,
    }


async def _descriptor(payload: RecognitionRequest, services: AccessServices):
    if payload.descriptor is not None:
        return payload.descriptor
    return await run_in_threadpool(services.recognition.describe_image, payload.image)


@router.post("/identify", response_model=IdentifyResponse)
async def identify(
    payload: RecognitionRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    ctx = operation_context(site_id, principal)
    try:
        descriptor = await _descriptor(payload, services)
        identification = await run_in_threadpool(
            services.recognition.identify_descriptor, ctx, payload.action, descriptor
        )
    except UNMATCHED as exc:
        return IdentifyResponse(matched=False, outcome=exc.code, message=str(exc))
    return IdentifyResponse(**_identified(identification))


@router.post("/scan", response_model=ScanResponse)
async def scan(
    payload: RecognitionRequest,
    site_id: str = Depends(require_site),
    principal: CurrentPrincipal = Depends(require_roles(*ANY_STAFF)),
    services: AccessServices = Depends(services_dep),
):
    ctx = operation_context(site_id, principal)
    try:
        descriptor = await _descriptor(payload, services)
        identification, result = await run_in_threadpool(
            lambda: services.recognition.scan(
                ctx, payload.action, descriptor=descriptor, observations=payload.observations
            )
        )
    except UNMATCHED as exc:
        return ScanResponse(matched=False, outcome=exc.code, message=str(exc))
    return ScanResponse(
        **_identified(identification),
        transition=TransitionResponse.model_validate(result),
    )
