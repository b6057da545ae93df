from __future__ import annotations

import logging
from typing import Any, Mapping

from tenantgate.core.errors import (
    EntitlementExceededError,
    NotFoundError,
    SelfModificationDeniedError,
    ValidationError,
)
from tenantgate.domain.entitlements import (
    Channel,
    EntitlementEvent,
    NotificationEvent,
    Plan,
    TenantEntitlement,
    TriState,
    UserPermission,
)
from tenantgate.persistence.stores import TenantEntitlementStore, UserPermissionStore
from tenantgate.services.catalog import FeatureCatalogRegistry
from tenantgate.services.events import EventBus
from tenantgate.services.resolver import is_channel_allowed


logger = logging.getLogger(__name__)

EVENT_PLAN_ASSIGNED = "tenant.plan_assigned"
EVENT_TENANT_FEATURES_UPDATED = "tenant.features_updated"
EVENT_TENANT_CHANNEL_OVERRIDE_UPDATED = "tenant.notification_override_updated"
EVENT_TENANT_SMS_LIMIT_UPDATED = "tenant.sms_limit_updated"
EVENT_USER_FEATURES_UPDATED = "user.feature_overrides_updated"
EVENT_USER_EVENT_CHANNEL_UPDATED = "user.event_channel_updated"


class PermissionMutationGuard:
    """Validates and applies every write to tenant and user entitlement records.

    Checks run in a fixed order so callers see deterministic errors:
    self-modification first, then key validity, then containment against the
    tenant grant. Nothing is written unless every check passes. Successful
    writes are published on the event bus.
    """

    def __init__(
        self,
        *,
        catalog: FeatureCatalogRegistry,
        tenants: TenantEntitlementStore,
        users: UserPermissionStore,
        events: EventBus,
    ) -> None:
        self._catalog = catalog
        self._tenants = tenants
        self._users = users
        self._events = events

    def assign_plan(
        self, tenant_id: str, plan: Plan, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        if not plan.is_active:
            raise ValidationError(f"Plan {plan.id} is not active", plan_id=plan.id)
        self.check_plan_keys(plan)
        # Seeding only sets keys to true; grants the new plan lacks are kept.
        record = self._tenants.seed_features(tenant_id, plan.feature_keys, plan_id=plan.id)
        logger.info(
            "plan_assigned tenant_id=%s plan_id=%s seeded=%s",
            tenant_id,
            plan.id,
            len(plan.feature_keys),
        )
        self._publish(
            EVENT_PLAN_ASSIGNED,
            tenant_id,
            actor_id=actor_id,
            metadata={"plan_id": plan.id, "feature_keys": sorted(plan.feature_keys)},
        )
        return record

    def check_plan_keys(self, plan: Plan) -> None:
        unknown = sorted(key for key in plan.feature_keys if not self._catalog.is_known(key))
        if unknown:
            raise ValidationError(
                f"Plan {plan.id} references unknown feature keys",
                plan_id=plan.id,
                feature_keys=unknown,
            )

    def set_tenant_feature(
        self, tenant_id: str, key: str, enabled: bool, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        return self.set_tenant_features(tenant_id, {key: enabled}, actor_id=actor_id)

    def set_tenant_features(
        self, tenant_id: str, updates: Mapping[str, bool], *, actor_id: str | None = None
    ) -> TenantEntitlement:
        if not updates:
            raise ValidationError("No feature updates supplied")
        for key in updates:
            self._require_known_key(key)
        normalized = {key: bool(value) for key, value in updates.items()}
        record = self._tenants.set_features(tenant_id, normalized)
        logger.info("tenant_features_set tenant_id=%s updates=%s", tenant_id, normalized)
        self._publish(
            EVENT_TENANT_FEATURES_UPDATED,
            tenant_id,
            actor_id=actor_id,
            metadata={"features": normalized},
        )
        return record

    def set_user_feature(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        key: str,
        value: TriState | bool | None,
    ) -> UserPermission:
        return self.set_user_features(actor_id, tenant_id, target_user_id, {key: value})

    def set_user_features(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        updates: Mapping[str, TriState | bool | None],
    ) -> UserPermission:
        self._deny_self_modification(actor_id, target_user_id, tenant_id)
        if not updates:
            raise ValidationError("No permission updates supplied")
        for key in updates:
            self._require_known_key(key)
        tenant = self._require_tenant(tenant_id)
        denied = sorted(key for key in updates if not tenant.has_feature(key))
        if denied:
            logger.info(
                "user_feature_denied tenant_id=%s target_user_id=%s feature_keys=%s",
                tenant_id,
                target_user_id,
                denied,
            )
            raise EntitlementExceededError(
                "Feature is not enabled for this tenant",
                tenant_id=tenant_id,
                feature_keys=denied,
            )
        normalized = {key: TriState.coerce(value) for key, value in updates.items()}
        record = self._users.set_feature_overrides(tenant_id, target_user_id, normalized)
        logger.info(
            "user_features_set tenant_id=%s actor_id=%s target_user_id=%s updates=%s",
            tenant_id,
            actor_id,
            target_user_id,
            {key: state.value for key, state in normalized.items()},
        )
        self._publish(
            EVENT_USER_FEATURES_UPDATED,
            tenant_id,
            actor_id=actor_id,
            subject_id=target_user_id,
            metadata={"overrides": {key: state.value for key, state in normalized.items()}},
        )
        return record

    def set_tenant_notification_override(
        self,
        tenant_id: str,
        channel: Channel,
        state: TriState | bool | None,
        *,
        actor_id: str | None = None,
    ) -> TenantEntitlement:
        resolved = TriState.coerce(state)
        record = self._tenants.set_channel_override(tenant_id, channel, resolved)
        logger.info(
            "tenant_channel_override_set tenant_id=%s channel=%s state=%s",
            tenant_id,
            channel.value,
            resolved.value,
        )
        self._publish(
            EVENT_TENANT_CHANNEL_OVERRIDE_UPDATED,
            tenant_id,
            actor_id=actor_id,
            metadata={"channel": channel.value, "state": resolved.value},
        )
        return record

    def set_monthly_sms_limit(
        self, tenant_id: str, limit: int | None, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        if limit is not None and limit < 0:
            raise ValidationError("monthly_sms_limit must be non-negative", monthly_sms_limit=limit)
        record = self._tenants.set_monthly_sms_limit(tenant_id, limit)
        logger.info("tenant_sms_limit_set tenant_id=%s limit=%s", tenant_id, limit)
        self._publish(
            EVENT_TENANT_SMS_LIMIT_UPDATED,
            tenant_id,
            actor_id=actor_id,
            metadata={"monthly_sms_limit": limit},
        )
        return record

    def set_user_event_channel_setting(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        event: NotificationEvent,
        channel: Channel,
        enabled: bool,
    ) -> UserPermission:
        return self.set_user_event_channel_settings(
            actor_id, tenant_id, target_user_id, {(event, channel): enabled}
        )

    def set_user_event_channel_settings(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        updates: Mapping[tuple[NotificationEvent, Channel], bool],
    ) -> UserPermission:
        self._deny_self_modification(actor_id, target_user_id, tenant_id)
        if not updates:
            raise ValidationError("No notification settings supplied")
        tenant = self._require_tenant(tenant_id)
        # Turning a setting off is always allowed; turning it on needs the channel.
        denied = sorted(
            {
                channel.value
                for (_event, channel), enabled in updates.items()
                if enabled and not is_channel_allowed(tenant, channel)
            }
        )
        if denied:
            logger.info(
                "user_event_channel_denied tenant_id=%s target_user_id=%s channels=%s",
                tenant_id,
                target_user_id,
                denied,
            )
            raise EntitlementExceededError(
                f"{', '.join(denied)} notifications are not allowed for this tenant",
                tenant_id=tenant_id,
                channels=denied,
            )
        normalized = {pair: bool(enabled) for pair, enabled in updates.items()}
        record = self._users.set_event_channel_settings(tenant_id, target_user_id, normalized)
        settings = [
            {"event": event.value, "channel": channel.value, "enabled": enabled}
            for (event, channel), enabled in normalized.items()
        ]
        logger.info(
            "user_event_channels_set tenant_id=%s target_user_id=%s count=%s",
            tenant_id,
            target_user_id,
            len(settings),
        )
        self._publish(
            EVENT_USER_EVENT_CHANNEL_UPDATED,
            tenant_id,
            actor_id=actor_id,
            subject_id=target_user_id,
            metadata={"settings": settings},
        )
        return record

    def _deny_self_modification(self, actor_id: str, target_user_id: str, tenant_id: str) -> None:
        if actor_id == target_user_id:
            logger.info("self_modification_denied tenant_id=%s user_id=%s", tenant_id, actor_id)
            raise SelfModificationDeniedError(
                "You cannot change your own permissions", user_id=actor_id
            )

    def _require_known_key(self, key: str) -> None:
        if not self._catalog.is_known(key):
            raise ValidationError(f"Unknown feature key: {key}", feature_key=key)

    def _require_tenant(self, tenant_id: str) -> TenantEntitlement:
        record = self._tenants.get(tenant_id)
        if record is None:
            raise NotFoundError(f"No entitlement record for tenant {tenant_id}", tenant_id=tenant_id)
        return record

    def _publish(
        self,
        event_type: str,
        tenant_id: str,
        *,
        actor_id: str | None = None,
        subject_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._events.publish(
            EntitlementEvent(
                event_type=event_type,
                tenant_id=tenant_id,
                actor_id=actor_id,
                subject_id=subject_id,
                metadata=metadata or {},
            )
        )
