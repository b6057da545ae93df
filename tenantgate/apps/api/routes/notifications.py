from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from tenantgate.apps.api.deps import (
    Principal,
    get_resolver,
    get_service,
    require_permission_editor,
    require_tenant_member,
)
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.apps.api.schemas import NotificationConfigResponse, notification_config_response
from tenantgate.domain.entitlements import Channel, NotificationEvent
from tenantgate.services.entitlements import EntitlementService
from tenantgate.services.resolver import EntitlementResolver


router = APIRouter(prefix="/notifications", tags=["notifications"], responses=DEFAULT_ERROR_RESPONSES)


class EventChannelSettingsResponse(BaseModel):
    tenant_id: str
    user_id: str
    channels: dict[str, bool]
    # event -> channel -> enabled, after the tenant channel check.
    settings: dict[str, dict[str, bool]]


class ResolutionResponse(BaseModel):
    event: NotificationEvent
    channel: Channel
    enabled: bool


class EventChannelSettingRequest(BaseModel):
    event: NotificationEvent
    channel: Channel
    enabled: bool


class EventChannelSettingsRequest(BaseModel):
    # Saved together; one disallowed channel rejects the whole list.
    settings: list[EventChannelSettingRequest] = Field(min_length=1)


class SmsReservationResponse(BaseModel):
    tenant_id: str
    unlimited: bool
    used: int | None
    limit: int | None


def _settings_response(resolver: EntitlementResolver) -> EventChannelSettingsResponse:
    return EventChannelSettingsResponse(
        tenant_id=resolver.tenant_id,
        user_id=resolver.user_id or "",
        channels={channel.value: allowed for channel, allowed in resolver.channel_availability().items()},
        settings={
            event.value: {channel.value: enabled for channel, enabled in by_channel.items()}
            for event, by_channel in resolver.event_channel_matrix().items()
        },
    )


@router.get("/config", response_model=SuccessEnvelope[NotificationConfigResponse])
def get_notification_config(
    request: Request,
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    config = service.get_notification_config(principal.tenant_id)
    return success_response(request=request, data=notification_config_response(config))


@router.get("/settings", response_model=SuccessEnvelope[EventChannelSettingsResponse])
def get_my_settings(
    request: Request,
    resolver: EntitlementResolver = Depends(get_resolver),
) -> dict:
    return success_response(request=request, data=_settings_response(resolver))


@router.get("/resolution", response_model=SuccessEnvelope[ResolutionResponse])
def get_resolution(
    request: Request,
    event: NotificationEvent = Query(...),
    channel: Channel = Query(...),
    resolver: EntitlementResolver = Depends(get_resolver),
) -> dict:
    payload = ResolutionResponse(
        event=event,
        channel=channel,
        enabled=resolver.event_channel_enabled(event, channel),
    )
    return success_response(request=request, data=payload)


@router.get("/settings/{user_id}", response_model=SuccessEnvelope[EventChannelSettingsResponse])
def get_user_settings(
    request: Request,
    user_id: str,
    principal: Principal = Depends(require_permission_editor),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    resolver = service.require_resolver(principal.tenant_id, user_id)
    return success_response(request=request, data=_settings_response(resolver))


@router.patch("/settings/{user_id}", response_model=SuccessEnvelope[EventChannelSettingsResponse])
def patch_user_settings(
    request: Request,
    user_id: str,
    payload: EventChannelSettingsRequest,
    principal: Principal = Depends(require_permission_editor),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    service.set_user_event_channel_settings(
        principal.user_id,
        principal.tenant_id,
        user_id,
        {(item.event, item.channel): item.enabled for item in payload.settings},
    )
    resolver = service.require_resolver(principal.tenant_id, user_id)
    return success_response(request=request, data=_settings_response(resolver))


@router.post("/sms/reserve", response_model=SuccessEnvelope[SmsReservationResponse])
def reserve_sms(
    request: Request,
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> dict:
    assert principal.tenant_id is not None
    decision = service.try_send_sms(principal.tenant_id)
    if decision is None:
        payload = SmsReservationResponse(
            tenant_id=principal.tenant_id, unlimited=True, used=None, limit=None
        )
    else:
        payload = SmsReservationResponse(
            tenant_id=principal.tenant_id,
            unlimited=False,
            used=decision.count,
            limit=decision.limit,
        )
    return success_response(request=request, data=payload)
