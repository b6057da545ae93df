from __future__ import annotations

from dataclasses import replace
import threading
from typing import Iterable, Mapping, Protocol

from tenantgate.core.errors import NotFoundError
from tenantgate.domain.entitlements import (
    Channel,
    NotificationEvent,
    NotificationOverrides,
    TenantEntitlement,
    TriState,
    UserPermission,
)


class TenantEntitlementStore(Protocol):
    def get(self, tenant_id: str) -> TenantEntitlement | None:
        ...

    def seed_features(
        self, tenant_id: str, feature_keys: Iterable[str], *, plan_id: str | None
    ) -> TenantEntitlement:
        ...

    def set_features(self, tenant_id: str, updates: Mapping[str, bool]) -> TenantEntitlement:
        ...

    def set_channel_override(
        self, tenant_id: str, channel: Channel, state: TriState
    ) -> TenantEntitlement:
        ...

    def set_monthly_sms_limit(self, tenant_id: str, limit: int | None) -> TenantEntitlement:
        ...


class UserPermissionStore(Protocol):
    def get(self, tenant_id: str, user_id: str) -> UserPermission | None:
        ...

    def set_feature_overrides(
        self, tenant_id: str, user_id: str, updates: Mapping[str, TriState]
    ) -> UserPermission:
        ...

    def set_event_channel_settings(
        self,
        tenant_id: str,
        user_id: str,
        updates: Mapping[tuple[NotificationEvent, Channel], bool],
    ) -> UserPermission:
        ...


class QuotaCounterStore(Protocol):
    def get(self, scope_id: str) -> int:
        ...

    def try_increment(self, scope_id: str, max_count: int) -> int | None:
        ...

    def decrement(self, scope_id: str) -> int:
        ...

    def reset(self, scope_id: str) -> None:
        ...


def _copy_tenant(record: TenantEntitlement) -> TenantEntitlement:
    return replace(record, features=dict(record.features))


def _copy_user(record: UserPermission) -> UserPermission:
    return replace(
        record,
        feature_overrides=dict(record.feature_overrides),
        event_channel_settings=dict(record.event_channel_settings),
    )


def _missing_tenant(tenant_id: str) -> NotFoundError:
    return NotFoundError(f"No entitlement record for tenant {tenant_id}", tenant_id=tenant_id)


class InMemoryTenantEntitlementStore:
    def __init__(self) -> None:
        self._records: dict[str, TenantEntitlement] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> TenantEntitlement | None:
        with self._lock:
            record = self._records.get(tenant_id)
            return _copy_tenant(record) if record is not None else None

    def seed_features(
        self, tenant_id: str, feature_keys: Iterable[str], *, plan_id: str | None
    ) -> TenantEntitlement:
        with self._lock:
            current = self._records.get(tenant_id) or TenantEntitlement(tenant_id=tenant_id)
            features = dict(current.features)
            for key in feature_keys:
                features[key] = True
            updated = replace(current, features=features, plan_id=plan_id or current.plan_id)
            self._records[tenant_id] = updated
            return _copy_tenant(updated)

    def set_features(self, tenant_id: str, updates: Mapping[str, bool]) -> TenantEntitlement:
        with self._lock:
            current = self._records.get(tenant_id)
            if current is None:
                raise _missing_tenant(tenant_id)
            features = dict(current.features)
            features.update({key: bool(value) for key, value in updates.items()})
            updated = replace(current, features=features)
            self._records[tenant_id] = updated
            return _copy_tenant(updated)

    def set_channel_override(
        self, tenant_id: str, channel: Channel, state: TriState
    ) -> TenantEntitlement:
        with self._lock:
            current = self._records.get(tenant_id)
            if current is None:
                raise _missing_tenant(tenant_id)
            if channel is Channel.EMAIL:
                notification = replace(current.notification, email_allowed=state)
            else:
                notification = replace(current.notification, sms_allowed=state)
            updated = replace(current, notification=notification)
            self._records[tenant_id] = updated
            return _copy_tenant(updated)

    def set_monthly_sms_limit(self, tenant_id: str, limit: int | None) -> TenantEntitlement:
        with self._lock:
            current = self._records.get(tenant_id)
            if current is None:
                raise _missing_tenant(tenant_id)
            notification: NotificationOverrides = replace(
                current.notification, monthly_sms_limit=limit
            )
            updated = replace(current, notification=notification)
            self._records[tenant_id] = updated
            return _copy_tenant(updated)


class InMemoryUserPermissionStore:
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], UserPermission] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str, user_id: str) -> UserPermission | None:
        with self._lock:
            record = self._records.get((tenant_id, user_id))
            return _copy_user(record) if record is not None else None

    def set_feature_overrides(
        self, tenant_id: str, user_id: str, updates: Mapping[str, TriState]
    ) -> UserPermission:
        with self._lock:
            current = self._records.get((tenant_id, user_id)) or UserPermission.empty(
                tenant_id, user_id
            )
            overrides = dict(current.feature_overrides)
            for key, state in updates.items():
                if state is TriState.UNSET:
                    overrides.pop(key, None)
                else:
                    overrides[key] = state
            updated = replace(current, feature_overrides=overrides)
            self._records[(tenant_id, user_id)] = updated
            return _copy_user(updated)

    def set_event_channel_settings(
        self,
        tenant_id: str,
        user_id: str,
        updates: Mapping[tuple[NotificationEvent, Channel], bool],
    ) -> UserPermission:
        with self._lock:
            current = self._records.get((tenant_id, user_id)) or UserPermission.empty(
                tenant_id, user_id
            )
            settings = dict(current.event_channel_settings)
            settings.update({pair: bool(enabled) for pair, enabled in updates.items()})
            updated = replace(current, event_channel_settings=settings)
            self._records[(tenant_id, user_id)] = updated
            return _copy_user(updated)


class InMemoryQuotaCounterStore:
    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, scope_id: str) -> int:
        with self._lock:
            return self._counts.get(scope_id, 0)

    def try_increment(self, scope_id: str, max_count: int) -> int | None:
        # Check and increment under one lock so concurrent callers cannot both pass.
        with self._lock:
            current = self._counts.get(scope_id, 0)
            if current >= max_count:
                return None
            self._counts[scope_id] = current + 1
            return current + 1

    def decrement(self, scope_id: str) -> int:
        with self._lock:
            updated = max(0, self._counts.get(scope_id, 0) - 1)
            self._counts[scope_id] = updated
            return updated

    def reset(self, scope_id: str) -> None:
        with self._lock:
            self._counts.pop(scope_id, None)
