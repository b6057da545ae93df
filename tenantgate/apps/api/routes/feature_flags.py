from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from tenantgate.apps.api.deps import (
    Principal,
    get_resolver,
    get_service,
    require_permission_editor,
)
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.domain.entitlements import TriState
from tenantgate.services.entitlements import EntitlementService, UserPermissionView
from tenantgate.services.resolver import EntitlementResolver


router = APIRouter(prefix="/feature-flags", tags=["feature-flags"], responses=DEFAULT_ERROR_RESPONSES)


class FeatureFlagsResponse(BaseModel):
    tenant_id: str
    user_id: str | None = None
    features: dict[str, bool]


class RouteCheckResponse(BaseModel):
    path: str
    feature_key: str | None
    allowed: bool


class PermissionEntry(BaseModel):
    # null removes the override so the user inherits the tenant grant.
    enabled: bool | None = None


class UserPermissionsResponse(BaseModel):
    tenant_id: str
    user_id: str
    tenant_features: dict[str, bool]
    overrides: dict[str, bool]
    resolved: dict[str, bool]


class UserPermissionsPatchRequest(BaseModel):
    permissions: dict[str, PermissionEntry] = Field(min_length=1)


def _permissions_response(view: UserPermissionView) -> UserPermissionsResponse:
    return UserPermissionsResponse(
        tenant_id=view.tenant_id,
        user_id=view.user_id,
        tenant_features=view.tenant_features,
        overrides={
            key: state is TriState.ENABLED
            for key, state in sorted(view.overrides.items())
            if state is not TriState.UNSET
        },
        resolved=view.resolved,
    )


@router.get("/user", response_model=SuccessEnvelope[FeatureFlagsResponse])
def get_my_features(
    request: Request,
    resolver: EntitlementResolver = Depends(get_resolver),
    service: EntitlementService = Depends(get_service),
) -> dict:
    catalog_keys = [item.key for item in service.catalog.list_definitions()]
    payload = FeatureFlagsResponse(
        tenant_id=resolver.tenant_id,
        user_id=resolver.user_id,
        features=resolver.features(catalog_keys),
    )
    return success_response(request=request, data=payload)


@router.get("/tenant", response_model=SuccessEnvelope[FeatureFlagsResponse])
def get_my_tenant_features(
    request: Request,
    resolver: EntitlementResolver = Depends(get_resolver),
) -> dict:
    payload = FeatureFlagsResponse(tenant_id=resolver.tenant_id, features=resolver.tenant_features())
    return success_response(request=request, data=payload)


@router.get("/route-check", response_model=SuccessEnvelope[RouteCheckResponse])
def check_route(
    request: Request,
    path: str = Query(min_length=1, max_length=2048),
    resolver: EntitlementResolver = Depends(get_resolver),
) -> dict:
    feature_key, allowed = resolver.path_allowed(path)
    return success_response(
        request=request,
        data=RouteCheckResponse(path=path, feature_key=feature_key, allowed=allowed),
    )


@router.get("/user/{user_id}", response_model=SuccessEnvelope[UserPermissionsResponse])
def get_user_permissions(
    request: Request,
    user_id: str,
    principal: Principal = Depends(require_permission_editor),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    view = service.get_user_permissions(principal.tenant_id, user_id)
    return success_response(request=request, data=_permissions_response(view))


@router.patch("/user/{user_id}", response_model=SuccessEnvelope[UserPermissionsResponse])
def patch_user_permissions(
    request: Request,
    user_id: str,
    payload: UserPermissionsPatchRequest,
    principal: Principal = Depends(require_permission_editor),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    updates = {key: entry.enabled for key, entry in payload.permissions.items()}
    service.set_user_features(principal.user_id, principal.tenant_id, user_id, updates)
    view = service.get_user_permissions(principal.tenant_id, user_id)
    return success_response(request=request, data=_permissions_response(view))
