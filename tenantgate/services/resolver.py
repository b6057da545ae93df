"""Pure entitlement decisions: plan -> tenant -> user.

Nothing in this module touches a store. Callers load a tenant record and a
user record once, then ask as many questions as they need; the answers are
deterministic for a given pair of records and safe to compute concurrently.

Two default policies meet here and are intentionally different:

* a user feature override that is absent inherits the tenant grant;
* a user (event, channel) setting that is absent is off.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from tenantgate.domain.entitlements import (
    Channel,
    NotificationEvent,
    TenantEntitlement,
    TriState,
    UserPermission,
)
from tenantgate.services.catalog import feature_for_path


def resolve_feature(
    tenant: TenantEntitlement | None, user: UserPermission | None, key: str
) -> bool:
    if tenant is None or not tenant.has_feature(key):
        return False
    override = user.override_for(key) if user is not None else TriState.UNSET
    if override is TriState.ENABLED:
        return True
    if override is TriState.DISABLED:
        return False
    return True


def plan_grants_channel(tenant: TenantEntitlement | None, channel: Channel) -> bool:
    # The channel capability is the tenant grant of its notifications.* key.
    return tenant is not None and tenant.has_feature(channel.feature_key)


def resolve_notification_channel(plan_grants: bool, override: TriState) -> bool:
    if override is TriState.DISABLED:
        return False
    # ENABLED cannot grant what the plan withholds, so it behaves like UNSET.
    return bool(plan_grants)


def is_channel_allowed(tenant: TenantEntitlement | None, channel: Channel) -> bool:
    if tenant is None:
        return False
    return resolve_notification_channel(
        plan_grants_channel(tenant, channel), tenant.notification.for_channel(channel)
    )


def resolve_event_channel_enabled(
    tenant: TenantEntitlement | None,
    user: UserPermission | None,
    event: NotificationEvent,
    channel: Channel,
) -> bool:
    if not is_channel_allowed(tenant, channel):
        return False
    if user is None:
        return False
    return user.event_setting(event, channel)


def resolve_features(
    tenant: TenantEntitlement | None,
    user: UserPermission | None,
    keys: Iterable[str] | None = None,
) -> dict[str, bool]:
    candidate_keys = set(keys or ())
    if tenant is not None:
        candidate_keys.update(tenant.features)
    return {key: resolve_feature(tenant, user, key) for key in sorted(candidate_keys)}


@dataclass(frozen=True)
class EntitlementResolver:
    # Snapshot of one (tenant, user) pair; build one per request and pass it down.
    tenant_id: str
    user_id: str | None
    tenant: TenantEntitlement | None
    user: UserPermission | None

    def feature(self, key: str) -> bool:
        return resolve_feature(self.tenant, self.user, key)

    def features(self, keys: Iterable[str] | None = None) -> dict[str, bool]:
        return resolve_features(self.tenant, self.user, keys)

    def tenant_features(self) -> dict[str, bool]:
        if self.tenant is None:
            return {}
        return dict(sorted(self.tenant.features.items()))

    def channel_allowed(self, channel: Channel) -> bool:
        return is_channel_allowed(self.tenant, channel)

    def channel_availability(self) -> dict[Channel, bool]:
        return {channel: self.channel_allowed(channel) for channel in Channel}

    def event_channel_enabled(self, event: NotificationEvent, channel: Channel) -> bool:
        return resolve_event_channel_enabled(self.tenant, self.user, event, channel)

    def event_channel_matrix(self) -> dict[NotificationEvent, dict[Channel, bool]]:
        return {
            event: {channel: self.event_channel_enabled(event, channel) for channel in Channel}
            for event in NotificationEvent
        }

    def path_allowed(self, path: str) -> tuple[str | None, bool]:
        # Returns the gating feature (None when ungated) and whether access is allowed.
        feature_key = feature_for_path(path)
        if feature_key is None:
            return None, True
        return feature_key, self.feature(feature_key)
