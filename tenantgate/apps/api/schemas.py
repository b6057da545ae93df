from __future__ import annotations

from pydantic import BaseModel

from tenantgate.services.entitlements import NotificationConfig


class NotificationConfigResponse(BaseModel):
    # Tri-state overrides render as true/false/null; channels are the resolved availability.
    tenant_id: str
    email_allowed: bool | None
    sms_allowed: bool | None
    monthly_sms_limit: int | None
    channels: dict[str, bool]
    sms_used: int


def notification_config_response(config: NotificationConfig) -> NotificationConfigResponse:
    return NotificationConfigResponse(
        tenant_id=config.tenant_id,
        email_allowed=config.email_allowed.as_optional(),
        sms_allowed=config.sms_allowed.as_optional(),
        monthly_sms_limit=config.monthly_sms_limit,
        channels={channel.value: allowed for channel, allowed in config.channels.items()},
        sms_used=config.sms_used,
    )
