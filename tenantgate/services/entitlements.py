from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Mapping

from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import EntitlementExceededError, NotFoundError, ValidationError
from tenantgate.domain.entitlements import (
    Channel,
    EntitlementEvent,
    NotificationEvent,
    Plan,
    QuotaDecision,
    TenantEntitlement,
    TriState,
    UserPermission,
)
from tenantgate.persistence.db import build_engine, build_session_factory, init_db
from tenantgate.persistence.redis_counters import RedisQuotaCounterStore
from tenantgate.persistence.sql import (
    SqlQuotaCounterStore,
    SqlTenantEntitlementStore,
    SqlUserPermissionStore,
)
from tenantgate.persistence.stores import (
    InMemoryQuotaCounterStore,
    InMemoryTenantEntitlementStore,
    InMemoryUserPermissionStore,
    QuotaCounterStore,
    TenantEntitlementStore,
    UserPermissionStore,
)
from tenantgate.services.catalog import (
    FeatureCatalogRegistry,
    InMemoryFeatureCatalog,
    SqlFeatureCatalog,
)
from tenantgate.services.events import EventBus, RecordingSubscriber, log_event
from tenantgate.services.identity import IdentityStore, InMemoryIdentityStore, parse_admin_ids
from tenantgate.services.mutations import PermissionMutationGuard
from tenantgate.services.plans import InMemoryPlanCatalog, PlanCatalog, SqlPlanCatalog
from tenantgate.services.quota import (
    QuotaSnapshot,
    ResourceQuotaGuard,
    build_quota_error,
    pin_scope,
    sms_scope,
)
from tenantgate.services.resolver import EntitlementResolver


logger = logging.getLogger(__name__)

_STORE_BACKENDS = frozenset({"memory", "sql"})
_QUOTA_BACKENDS = frozenset({"memory", "sql", "redis"})


@dataclass(frozen=True)
class NotificationConfig:
    tenant_id: str
    email_allowed: TriState
    sms_allowed: TriState
    monthly_sms_limit: int | None
    channels: dict[Channel, bool]
    sms_used: int


@dataclass(frozen=True)
class UserPermissionView:
    # Tenant grant alongside the user's explicit overrides, for permission editors.
    tenant_id: str
    user_id: str
    tenant_features: dict[str, bool]
    overrides: dict[str, TriState]
    resolved: dict[str, bool]


class EntitlementService:
    """Entry point for entitlement reads and writes.

    Reads go through a per-request :class:`EntitlementResolver` snapshot;
    writes go through the :class:`PermissionMutationGuard`. Quota-bounded
    actions (pinning, SMS sends) go through the :class:`ResourceQuotaGuard`.
    """

    def __init__(
        self,
        *,
        catalog: FeatureCatalogRegistry,
        plans: PlanCatalog,
        tenants: TenantEntitlementStore,
        users: UserPermissionStore,
        counters: QuotaCounterStore,
        identity: IdentityStore,
        events: EventBus,
        recorder: RecordingSubscriber | None = None,
        pinned_items_max: int = 5,
    ) -> None:
        self.catalog = catalog
        self.plans = plans
        self.tenants = tenants
        self.users = users
        self.identity = identity
        self.events = events
        self.recorder = recorder
        self.quota = ResourceQuotaGuard(counters)
        self.guard = PermissionMutationGuard(
            catalog=catalog, tenants=tenants, users=users, events=events
        )
        self.pinned_items_max = pinned_items_max

    # Reads

    def resolver_for(self, tenant_id: str, user_id: str | None = None) -> EntitlementResolver:
        tenant = self.tenants.get(tenant_id)
        user = self.users.get(tenant_id, user_id) if user_id else None
        return EntitlementResolver(tenant_id=tenant_id, user_id=user_id, tenant=tenant, user=user)

    def require_resolver(self, tenant_id: str, user_id: str | None = None) -> EntitlementResolver:
        resolver = self.resolver_for(tenant_id, user_id)
        if resolver.tenant is None:
            raise self._missing_tenant(tenant_id)
        return resolver

    def get_resolved_features(self, tenant_id: str, user_id: str) -> dict[str, bool]:
        # Every catalog key is reported so absent grants show up as false.
        catalog_keys = [item.key for item in self.catalog.list_definitions()]
        return self.require_resolver(tenant_id, user_id).features(catalog_keys)

    def get_tenant(self, tenant_id: str) -> TenantEntitlement:
        return self._require_tenant(tenant_id)

    def get_tenant_features(self, tenant_id: str) -> dict[str, bool]:
        return dict(sorted(self._require_tenant(tenant_id).features.items()))

    def get_user_permissions(self, tenant_id: str, user_id: str) -> UserPermissionView:
        resolver = self.require_resolver(tenant_id, user_id)
        overrides = dict(resolver.user.feature_overrides) if resolver.user is not None else {}
        return UserPermissionView(
            tenant_id=tenant_id,
            user_id=user_id,
            tenant_features=resolver.tenant_features(),
            overrides=overrides,
            resolved=resolver.features(),
        )

    def get_notification_resolution(
        self, tenant_id: str, user_id: str, event: NotificationEvent, channel: Channel
    ) -> bool:
        return self.require_resolver(tenant_id, user_id).event_channel_enabled(event, channel)

    def get_event_channel_matrix(
        self, tenant_id: str, user_id: str
    ) -> dict[NotificationEvent, dict[Channel, bool]]:
        return self.require_resolver(tenant_id, user_id).event_channel_matrix()

    def recent_events(self, tenant_id: str) -> list[EntitlementEvent]:
        if self.recorder is None:
            return []
        return self.recorder.events(tenant_id)

    def get_notification_config(self, tenant_id: str) -> NotificationConfig:
        tenant = self._require_tenant(tenant_id)
        resolver = EntitlementResolver(tenant_id=tenant_id, user_id=None, tenant=tenant, user=None)
        return NotificationConfig(
            tenant_id=tenant_id,
            email_allowed=tenant.notification.email_allowed,
            sms_allowed=tenant.notification.sms_allowed,
            monthly_sms_limit=tenant.notification.monthly_sms_limit,
            channels=resolver.channel_availability(),
            sms_used=self.quota.snapshot(sms_scope(tenant_id), None).used,
        )

    # Writes

    def save_plan(self, plan: Plan) -> Plan:
        self.guard.check_plan_keys(plan)
        return self.plans.save_plan(plan)

    def assign_plan(
        self, tenant_id: str, plan_id: str, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        plan = self.plans.get_plan(plan_id)
        return self.guard.assign_plan(tenant_id, plan, actor_id=actor_id)

    def assign_default_plan(self, tenant_id: str, *, actor_id: str | None = None) -> TenantEntitlement:
        plan = self.plans.default_plan()
        if plan is None:
            raise NotFoundError("No default plan is configured")
        return self.guard.assign_plan(tenant_id, plan, actor_id=actor_id)

    def set_tenant_feature(
        self, tenant_id: str, key: str, enabled: bool, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        return self.guard.set_tenant_feature(tenant_id, key, enabled, actor_id=actor_id)

    def set_tenant_features(
        self, tenant_id: str, updates: Mapping[str, bool], *, actor_id: str | None = None
    ) -> TenantEntitlement:
        return self.guard.set_tenant_features(tenant_id, updates, actor_id=actor_id)

    def set_user_feature(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        key: str,
        value: TriState | bool | None,
    ) -> UserPermission:
        return self.guard.set_user_feature(actor_id, tenant_id, target_user_id, key, value)

    def set_user_features(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        updates: Mapping[str, TriState | bool | None],
    ) -> UserPermission:
        return self.guard.set_user_features(actor_id, tenant_id, target_user_id, updates)

    def set_tenant_notification_override(
        self,
        tenant_id: str,
        channel: Channel,
        state: TriState | bool | None,
        *,
        actor_id: str | None = None,
    ) -> TenantEntitlement:
        return self.guard.set_tenant_notification_override(
            tenant_id, channel, state, actor_id=actor_id
        )

    def set_monthly_sms_limit(
        self, tenant_id: str, limit: int | None, *, actor_id: str | None = None
    ) -> TenantEntitlement:
        return self.guard.set_monthly_sms_limit(tenant_id, limit, actor_id=actor_id)

    def set_user_event_channel_setting(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        event: NotificationEvent,
        channel: Channel,
        enabled: bool,
    ) -> UserPermission:
        return self.guard.set_user_event_channel_setting(
            actor_id, tenant_id, target_user_id, event, channel, enabled
        )

    def set_user_event_channel_settings(
        self,
        actor_id: str,
        tenant_id: str,
        target_user_id: str,
        updates: Mapping[tuple[NotificationEvent, Channel], bool],
    ) -> UserPermission:
        return self.guard.set_user_event_channel_settings(
            actor_id, tenant_id, target_user_id, updates
        )

    # Quotas

    def try_pin_item(self, tenant_id: str, user_id: str) -> QuotaDecision:
        decision = self.quota.try_increment(pin_scope(tenant_id, user_id), self.pinned_items_max)
        if not decision.allowed:
            raise build_quota_error(
                decision, f"You can pin at most {self.pinned_items_max} notes"
            )
        return decision

    def unpin_item(self, tenant_id: str, user_id: str) -> int:
        return self.quota.decrement(pin_scope(tenant_id, user_id))

    def pinned_stats(self, tenant_id: str, user_id: str) -> QuotaSnapshot:
        return self.quota.snapshot(pin_scope(tenant_id, user_id), self.pinned_items_max)

    def try_send_sms(self, tenant_id: str) -> QuotaDecision | None:
        """Reserve one SMS send for the tenant's current month.

        Returns ``None`` when the tenant has no monthly limit; no counter is
        touched in that case.
        """
        tenant = self._require_tenant(tenant_id)
        resolver = EntitlementResolver(tenant_id=tenant_id, user_id=None, tenant=tenant, user=None)
        if not resolver.channel_allowed(Channel.SMS):
            raise EntitlementExceededError(
                "SMS notifications are not allowed for this tenant",
                tenant_id=tenant_id,
                channel=Channel.SMS.value,
            )
        limit = tenant.notification.monthly_sms_limit
        if limit is None:
            return None
        decision = self.quota.try_increment(sms_scope(tenant_id), limit)
        if not decision.allowed:
            raise build_quota_error(decision, "Monthly SMS limit reached")
        return decision

    def reset_monthly_sms(self, tenant_id: str) -> None:
        self.quota.reset_scope(sms_scope(tenant_id))

    def _require_tenant(self, tenant_id: str) -> TenantEntitlement:
        record = self.tenants.get(tenant_id)
        if record is None:
            raise self._missing_tenant(tenant_id)
        return record

    @staticmethod
    def _missing_tenant(tenant_id: str) -> NotFoundError:
        return NotFoundError(f"No entitlement record for tenant {tenant_id}", tenant_id=tenant_id)


def _build_session_factory(settings: Settings) -> sessionmaker[Session]:
    engine = build_engine(settings.database_url, echo=settings.db_echo)
    init_db(engine)
    return build_session_factory(engine)


def build_service(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    identity: IdentityStore | None = None,
    events: EventBus | None = None,
) -> EntitlementService:
    """Wire stores for the configured backends into an :class:`EntitlementService`."""
    settings = settings or get_settings()
    store_backend = settings.store_backend.strip().lower()
    quota_backend = settings.quota_backend.strip().lower()
    if store_backend not in _STORE_BACKENDS:
        raise ValidationError(f"Unsupported store backend: {settings.store_backend}")
    if quota_backend not in _QUOTA_BACKENDS:
        raise ValidationError(f"Unsupported quota backend: {settings.quota_backend}")

    needs_sql = store_backend == "sql" or quota_backend == "sql"
    if needs_sql and session_factory is None:
        session_factory = _build_session_factory(settings)

    catalog: FeatureCatalogRegistry
    plans: PlanCatalog
    tenants: TenantEntitlementStore
    users: UserPermissionStore
    if store_backend == "sql":
        assert session_factory is not None
        catalog = SqlFeatureCatalog(session_factory)
        plans = SqlPlanCatalog(session_factory)
        tenants = SqlTenantEntitlementStore(session_factory)
        users = SqlUserPermissionStore(session_factory)
    else:
        catalog = InMemoryFeatureCatalog()
        plans = InMemoryPlanCatalog()
        tenants = InMemoryTenantEntitlementStore()
        users = InMemoryUserPermissionStore()

    counters: QuotaCounterStore
    if quota_backend == "sql":
        assert session_factory is not None
        counters = SqlQuotaCounterStore(session_factory)
    elif quota_backend == "redis":
        counters = RedisQuotaCounterStore.from_url(
            settings.redis_url, prefix=settings.quota_redis_prefix
        )
    else:
        counters = InMemoryQuotaCounterStore()

    recorder: RecordingSubscriber | None = None
    if events is None:
        events = EventBus()
        events.subscribe(log_event)
        recorder = RecordingSubscriber()
        events.subscribe(recorder)

    if settings.seed_default_features:
        catalog.seed_defaults()

    logger.info(
        "entitlement_service_built store_backend=%s quota_backend=%s",
        store_backend,
        quota_backend,
    )
    return EntitlementService(
        catalog=catalog,
        plans=plans,
        tenants=tenants,
        users=users,
        counters=counters,
        identity=identity or InMemoryIdentityStore(parse_admin_ids(settings.platform_admin_ids)),
        events=events,
        recorder=recorder,
        pinned_items_max=settings.pinned_items_max,
    )


_service: EntitlementService | None = None


def get_entitlement_service() -> EntitlementService:
    # Share one service per process so in-memory stores survive between requests.
    global _service
    if _service is None:
        _service = build_service()
    return _service


def reset_entitlement_service() -> None:
    global _service
    _service = None
