from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from tenantgate.apps.api.deps import Principal, get_service, require_tenant_member
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.services.entitlements import EntitlementService


router = APIRouter(prefix="/personal-notes", tags=["personal-notes"], responses=DEFAULT_ERROR_RESPONSES)


class PinnedCountResponse(BaseModel):
    count: int
    max: int


def _pinned_count(service: EntitlementService, principal: Principal) -> PinnedCountResponse:
    assert principal.tenant_id is not None
    snapshot = service.pinned_stats(principal.tenant_id, principal.user_id)
    return PinnedCountResponse(count=snapshot.used, max=service.pinned_items_max)


@router.get("/stats/pinned-count", response_model=SuccessEnvelope[PinnedCountResponse])
def get_pinned_count(
    request: Request,
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> dict:
    return success_response(request=request, data=_pinned_count(service, principal))


@router.post(
    "/pins",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[PinnedCountResponse],
)
def pin_note(
    request: Request,
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    decision = service.try_pin_item(principal.tenant_id, principal.user_id)
    payload = PinnedCountResponse(count=decision.count, max=service.pinned_items_max)
    return success_response(request=request, data=payload)


@router.delete("/pins", response_model=SuccessEnvelope[PinnedCountResponse])
def unpin_note(
    request: Request,
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    count = service.unpin_item(principal.tenant_id, principal.user_id)
    return success_response(
        request=request,
        data=PinnedCountResponse(count=count, max=service.pinned_items_max),
    )
