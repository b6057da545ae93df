from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from tenantgate.apps.api.deps import Principal, get_service, require_platform_admin
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.apps.api.schemas import NotificationConfigResponse, notification_config_response
from tenantgate.domain.entitlements import (
    CATEGORY_LABELS,
    Channel,
    FeatureCategory,
    FeatureDefinition,
    Plan,
    TenantEntitlement,
    TriState,
)
from tenantgate.services.entitlements import EntitlementService


router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class FeatureDefinitionResponse(BaseModel):
    key: str
    display_name: str
    category: FeatureCategory
    category_label: str
    description: str | None
    is_active: bool


class FeatureCreateRequest(BaseModel):
    key: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=200)
    category: FeatureCategory
    description: str | None = None
    is_active: bool = True


class FeatureUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_active: bool | None = None


class SeedResponse(BaseModel):
    inserted: int


class PlanResponse(BaseModel):
    id: str
    slug: str | None
    name: str
    price: float
    billing_cycle: str
    feature_keys: list[str]
    is_active: bool
    is_default: bool


class PlanUpsertRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str | None = None
    price: float = Field(default=0.0, ge=0)
    billing_cycle: str = Field(default="monthly", pattern="^(monthly|quarterly|yearly)$")
    feature_keys: list[str] = Field(default_factory=list)
    is_active: bool = True
    is_default: bool = False


class TenantFeaturesResponse(BaseModel):
    tenant_id: str
    plan_id: str | None
    features: dict[str, bool]


class TenantFeaturesPatchRequest(BaseModel):
    features: dict[str, bool] = Field(min_length=1)


class AssignPlanRequest(BaseModel):
    # Omit plan_id to assign the catalog's default plan.
    plan_id: str | None = None


class NotificationConfigPatchRequest(BaseModel):
    # null clears an override back to "inherit from plan"; omitted fields are unchanged.
    email_allowed: bool | None = None
    sms_allowed: bool | None = None
    monthly_sms_limit: int | None = Field(default=None, ge=0)


class EntitlementEventResponse(BaseModel):
    event_type: str
    tenant_id: str
    actor_id: str | None
    subject_id: str | None
    metadata: dict[str, Any]
    occurred_at: datetime


def _feature_response(definition: FeatureDefinition) -> FeatureDefinitionResponse:
    return FeatureDefinitionResponse(
        key=definition.key,
        display_name=definition.display_name,
        category=definition.category,
        category_label=CATEGORY_LABELS[definition.category],
        description=definition.description,
        is_active=definition.is_active,
    )


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        slug=plan.slug,
        name=plan.name,
        price=plan.price,
        billing_cycle=plan.billing_cycle,
        feature_keys=sorted(plan.feature_keys),
        is_active=plan.is_active,
        is_default=plan.is_default,
    )


def _tenant_features_response(record: TenantEntitlement) -> TenantFeaturesResponse:
    return TenantFeaturesResponse(
        tenant_id=record.tenant_id,
        plan_id=record.plan_id,
        features=dict(sorted(record.features.items())),
    )


@router.get("/features", response_model=SuccessEnvelope[list[FeatureDefinitionResponse]])
def list_features(
    request: Request,
    category: FeatureCategory | None = Query(default=None),
    active_only: bool = Query(default=False),
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    definitions = service.catalog.list_definitions(category=category, active_only=active_only)
    return success_response(request=request, data=[_feature_response(item) for item in definitions])


@router.post(
    "/features",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[FeatureDefinitionResponse],
)
def create_feature(
    request: Request,
    payload: FeatureCreateRequest,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    definition = service.catalog.register(
        FeatureDefinition(
            key=payload.key,
            display_name=payload.display_name,
            category=payload.category,
            description=payload.description,
            is_active=payload.is_active,
        )
    )
    return success_response(request=request, data=_feature_response(definition))


@router.patch("/features/{feature_key}", response_model=SuccessEnvelope[FeatureDefinitionResponse])
def update_feature(
    request: Request,
    feature_key: str,
    payload: FeatureUpdateRequest,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    definition = service.catalog.update(
        feature_key,
        display_name=payload.display_name,
        description=payload.description,
        is_active=payload.is_active,
    )
    return success_response(request=request, data=_feature_response(definition))


@router.post("/features/seed", response_model=SuccessEnvelope[SeedResponse])
def seed_features(
    request: Request,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    inserted = service.catalog.seed_defaults()
    return success_response(request=request, data=SeedResponse(inserted=inserted))


@router.get("/plans", response_model=SuccessEnvelope[list[PlanResponse]])
def list_plans(
    request: Request,
    active_only: bool = Query(default=False),
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    plans = service.plans.list_plans(active_only=active_only)
    return success_response(request=request, data=[_plan_response(plan) for plan in plans])


@router.put("/plans/{plan_id}", response_model=SuccessEnvelope[PlanResponse])
def upsert_plan(
    request: Request,
    plan_id: str,
    payload: PlanUpsertRequest,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    plan = service.save_plan(
        Plan(
            id=plan_id,
            slug=payload.slug,
            name=payload.name,
            price=payload.price,
            billing_cycle=payload.billing_cycle,
            feature_keys=frozenset(payload.feature_keys),
            is_active=payload.is_active,
            is_default=payload.is_default,
        )
    )
    return success_response(request=request, data=_plan_response(plan))


@router.post("/plans/{plan_id}/default", response_model=SuccessEnvelope[PlanResponse])
def set_default_plan(
    request: Request,
    plan_id: str,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    plan = service.plans.set_default(plan_id)
    return success_response(request=request, data=_plan_response(plan))


@router.get("/tenants/{tenant_id}/features", response_model=SuccessEnvelope[TenantFeaturesResponse])
def get_tenant_features(
    request: Request,
    tenant_id: str,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    record = service.get_tenant(tenant_id)
    return success_response(request=request, data=_tenant_features_response(record))


@router.patch("/tenants/{tenant_id}/features", response_model=SuccessEnvelope[TenantFeaturesResponse])
def patch_tenant_features(
    request: Request,
    tenant_id: str,
    payload: TenantFeaturesPatchRequest,
    principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    record = service.set_tenant_features(tenant_id, payload.features, actor_id=principal.user_id)
    return success_response(request=request, data=_tenant_features_response(record))


@router.post("/tenants/{tenant_id}/plan", response_model=SuccessEnvelope[TenantFeaturesResponse])
def assign_plan(
    request: Request,
    tenant_id: str,
    payload: AssignPlanRequest,
    principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    if payload.plan_id is None:
        record = service.assign_default_plan(tenant_id, actor_id=principal.user_id)
    else:
        record = service.assign_plan(tenant_id, payload.plan_id, actor_id=principal.user_id)
    return success_response(request=request, data=_tenant_features_response(record))


@router.get(
    "/tenants/{tenant_id}/notifications/config",
    response_model=SuccessEnvelope[NotificationConfigResponse],
)
def get_tenant_notification_config(
    request: Request,
    tenant_id: str,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    config = service.get_notification_config(tenant_id)
    return success_response(request=request, data=notification_config_response(config))


@router.patch(
    "/tenants/{tenant_id}/notifications/config",
    response_model=SuccessEnvelope[NotificationConfigResponse],
)
def patch_tenant_notification_config(
    request: Request,
    tenant_id: str,
    payload: NotificationConfigPatchRequest,
    principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    provided = payload.model_fields_set
    if "email_allowed" in provided:
        service.set_tenant_notification_override(
            tenant_id,
            Channel.EMAIL,
            TriState.from_optional(payload.email_allowed),
            actor_id=principal.user_id,
        )
    if "sms_allowed" in provided:
        service.set_tenant_notification_override(
            tenant_id,
            Channel.SMS,
            TriState.from_optional(payload.sms_allowed),
            actor_id=principal.user_id,
        )
    if "monthly_sms_limit" in provided:
        service.set_monthly_sms_limit(tenant_id, payload.monthly_sms_limit, actor_id=principal.user_id)
    config = service.get_notification_config(tenant_id)
    return success_response(request=request, data=notification_config_response(config))


@router.post(
    "/tenants/{tenant_id}/sms/reset",
    response_model=SuccessEnvelope[NotificationConfigResponse],
)
def reset_tenant_sms_counter(
    request: Request,
    tenant_id: str,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    service.get_tenant(tenant_id)
    service.reset_monthly_sms(tenant_id)
    config = service.get_notification_config(tenant_id)
    return success_response(request=request, data=notification_config_response(config))


@router.get(
    "/tenants/{tenant_id}/events",
    response_model=SuccessEnvelope[list[EntitlementEventResponse]],
)
def list_tenant_events(
    request: Request,
    tenant_id: str,
    _principal: Principal = Depends(require_platform_admin),
    service: EntitlementService = Depends(get_service),
) -> dict:
    events = [
        EntitlementEventResponse(
            event_type=event.event_type,
            tenant_id=event.tenant_id,
            actor_id=event.actor_id,
            subject_id=event.subject_id,
            metadata=event.metadata,
            occurred_at=event.occurred_at,
        )
        for event in service.recent_events(tenant_id)
    ]
    return success_response(request=request, data=events)
