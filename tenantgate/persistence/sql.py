from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.errors import NotFoundError
from tenantgate.domain.entitlements import (
    Channel,
    NotificationEvent,
    NotificationOverrides,
    TenantEntitlement,
    TriState,
    UserPermission,
)
from tenantgate.domain.models import (
    QuotaCounterRow,
    TenantEntitlementRow,
    TenantFeatureRow,
    UserEventChannelSettingRow,
    UserFeatureOverrideRow,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

# A concurrent first insert can race us once; a second collision is a real error.
_MAX_WRITE_ATTEMPTS = 2


def _run_write(
    session_factory: sessionmaker[Session], operation: str, fn: Callable[[Session], T]
) -> T:
    for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
        with session_factory() as session:
            try:
                result = fn(session)
                session.commit()
                return result
            except IntegrityError:
                session.rollback()
                if attempt >= _MAX_WRITE_ATTEMPTS:
                    raise
                logger.warning("store_write_conflict operation=%s attempt=%s", operation, attempt)
    raise RuntimeError("unreachable")


def _to_entitlement(row: TenantEntitlementRow, feature_rows: Iterable[TenantFeatureRow]) -> TenantEntitlement:
    return TenantEntitlement(
        tenant_id=row.tenant_id,
        features={feature.feature_key: bool(feature.enabled) for feature in feature_rows},
        notification=NotificationOverrides(
            email_allowed=TriState.coerce(row.email_allowed),
            sms_allowed=TriState.coerce(row.sms_allowed),
            monthly_sms_limit=row.monthly_sms_limit,
        ),
        plan_id=row.plan_id,
    )


def _load_entitlement(session: Session, tenant_id: str) -> TenantEntitlement | None:
    row = session.get(TenantEntitlementRow, tenant_id)
    if row is None:
        return None
    feature_rows = session.execute(
        select(TenantFeatureRow).where(TenantFeatureRow.tenant_id == tenant_id)
    ).scalars()
    return _to_entitlement(row, feature_rows)


def _require_entitlement_row(session: Session, tenant_id: str) -> TenantEntitlementRow:
    row = session.get(TenantEntitlementRow, tenant_id)
    if row is None:
        raise NotFoundError(f"No entitlement record for tenant {tenant_id}", tenant_id=tenant_id)
    return row


def _upsert_tenant_feature(session: Session, tenant_id: str, key: str, enabled: bool) -> None:
    existing = session.get(TenantFeatureRow, (tenant_id, key))
    if existing is None:
        session.add(TenantFeatureRow(tenant_id=tenant_id, feature_key=key, enabled=enabled))
    else:
        existing.enabled = enabled


class SqlTenantEntitlementStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, tenant_id: str) -> TenantEntitlement | None:
        with self._session_factory() as session:
            return _load_entitlement(session, tenant_id)

    def seed_features(
        self, tenant_id: str, feature_keys: Iterable[str], *, plan_id: str | None
    ) -> TenantEntitlement:
        keys = list(feature_keys)

        def _apply(session: Session) -> TenantEntitlement:
            row = session.get(TenantEntitlementRow, tenant_id)
            if row is None:
                row = TenantEntitlementRow(
                    tenant_id=tenant_id,
                    plan_id=plan_id,
                    email_allowed=TriState.UNSET.value,
                    sms_allowed=TriState.UNSET.value,
                )
                session.add(row)
                session.flush()
            elif plan_id is not None:
                row.plan_id = plan_id
            for key in keys:
                _upsert_tenant_feature(session, tenant_id, key, True)
            session.flush()
            loaded = _load_entitlement(session, tenant_id)
            assert loaded is not None
            return loaded

        return _run_write(self._session_factory, "seed_features", _apply)

    def set_features(self, tenant_id: str, updates: Mapping[str, bool]) -> TenantEntitlement:
        def _apply(session: Session) -> TenantEntitlement:
            row = _require_entitlement_row(session, tenant_id)
            for key, enabled in updates.items():
                _upsert_tenant_feature(session, tenant_id, key, bool(enabled))
            session.flush()
            return _to_entitlement(
                row,
                session.execute(
                    select(TenantFeatureRow).where(TenantFeatureRow.tenant_id == tenant_id)
                ).scalars(),
            )

        return _run_write(self._session_factory, "set_features", _apply)

    def set_channel_override(
        self, tenant_id: str, channel: Channel, state: TriState
    ) -> TenantEntitlement:
        def _apply(session: Session) -> TenantEntitlement:
            row = _require_entitlement_row(session, tenant_id)
            if channel is Channel.EMAIL:
                row.email_allowed = state.value
            else:
                row.sms_allowed = state.value
            session.flush()
            loaded = _load_entitlement(session, tenant_id)
            assert loaded is not None
            return loaded

        return _run_write(self._session_factory, "set_channel_override", _apply)

    def set_monthly_sms_limit(self, tenant_id: str, limit: int | None) -> TenantEntitlement:
        def _apply(session: Session) -> TenantEntitlement:
            row = _require_entitlement_row(session, tenant_id)
            row.monthly_sms_limit = limit
            session.flush()
            loaded = _load_entitlement(session, tenant_id)
            assert loaded is not None
            return loaded

        return _run_write(self._session_factory, "set_monthly_sms_limit", _apply)


def _load_permission(session: Session, tenant_id: str, user_id: str) -> UserPermission | None:
    override_rows = session.execute(
        select(UserFeatureOverrideRow).where(
            UserFeatureOverrideRow.tenant_id == tenant_id,
            UserFeatureOverrideRow.user_id == user_id,
        )
    ).scalars().all()
    setting_rows = session.execute(
        select(UserEventChannelSettingRow).where(
            UserEventChannelSettingRow.tenant_id == tenant_id,
            UserEventChannelSettingRow.user_id == user_id,
        )
    ).scalars().all()
    if not override_rows and not setting_rows:
        return None
    return UserPermission(
        tenant_id=tenant_id,
        user_id=user_id,
        feature_overrides={row.feature_key: TriState.coerce(row.state) for row in override_rows},
        event_channel_settings={
            (NotificationEvent(row.event), Channel(row.channel)): bool(row.enabled)
            for row in setting_rows
        },
    )


class SqlUserPermissionStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, tenant_id: str, user_id: str) -> UserPermission | None:
        with self._session_factory() as session:
            return _load_permission(session, tenant_id, user_id)

    def set_feature_overrides(
        self, tenant_id: str, user_id: str, updates: Mapping[str, TriState]
    ) -> UserPermission:
        def _apply(session: Session) -> UserPermission:
            for key, state in updates.items():
                if state is TriState.UNSET:
                    session.execute(
                        delete(UserFeatureOverrideRow).where(
                            UserFeatureOverrideRow.tenant_id == tenant_id,
                            UserFeatureOverrideRow.user_id == user_id,
                            UserFeatureOverrideRow.feature_key == key,
                        )
                    )
                    continue
                existing = session.get(UserFeatureOverrideRow, (tenant_id, user_id, key))
                if existing is None:
                    session.add(
                        UserFeatureOverrideRow(
                            tenant_id=tenant_id, user_id=user_id, feature_key=key, state=state.value
                        )
                    )
                else:
                    existing.state = state.value
            session.flush()
            return _load_permission(session, tenant_id, user_id) or UserPermission.empty(
                tenant_id, user_id
            )

        return _run_write(self._session_factory, "set_feature_overrides", _apply)

    def set_event_channel_settings(
        self,
        tenant_id: str,
        user_id: str,
        updates: Mapping[tuple[NotificationEvent, Channel], bool],
    ) -> UserPermission:
        def _apply(session: Session) -> UserPermission:
            for (event, channel), enabled in updates.items():
                existing = session.get(
                    UserEventChannelSettingRow, (tenant_id, user_id, event.value, channel.value)
                )
                if existing is None:
                    session.add(
                        UserEventChannelSettingRow(
                            tenant_id=tenant_id,
                            user_id=user_id,
                            event=event.value,
                            channel=channel.value,
                            enabled=bool(enabled),
                        )
                    )
                else:
                    existing.enabled = bool(enabled)
            session.flush()
            return _load_permission(session, tenant_id, user_id) or UserPermission.empty(
                tenant_id, user_id
            )

        return _run_write(self._session_factory, "set_event_channel_settings", _apply)


class SqlQuotaCounterStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, scope_id: str) -> int:
        with self._session_factory() as session:
            value = session.execute(
                select(QuotaCounterRow.current_count).where(QuotaCounterRow.scope_id == scope_id)
            ).scalar_one_or_none()
        return int(value or 0)

    def try_increment(self, scope_id: str, max_count: int) -> int | None:
        if max_count <= 0:
            return None

        def _apply(session: Session) -> int | None:
            # Conditional update is the compare-and-set; rowcount 0 means at max or no row yet.
            result = session.execute(
                update(QuotaCounterRow)
                .where(
                    QuotaCounterRow.scope_id == scope_id,
                    QuotaCounterRow.current_count < max_count,
                )
                .values(current_count=QuotaCounterRow.current_count + 1)
            )
            if result.rowcount == 1:
                return int(
                    session.execute(
                        select(QuotaCounterRow.current_count).where(
                            QuotaCounterRow.scope_id == scope_id
                        )
                    ).scalar_one()
                )
            exists = session.execute(
                select(QuotaCounterRow.scope_id).where(QuotaCounterRow.scope_id == scope_id)
            ).first()
            if exists is not None:
                return None
            session.add(QuotaCounterRow(scope_id=scope_id, current_count=1))
            session.flush()
            return 1

        return _run_write(self._session_factory, "quota_try_increment", _apply)

    def decrement(self, scope_id: str) -> int:
        def _apply(session: Session) -> int:
            session.execute(
                update(QuotaCounterRow)
                .where(QuotaCounterRow.scope_id == scope_id, QuotaCounterRow.current_count > 0)
                .values(current_count=QuotaCounterRow.current_count - 1)
            )
            value = session.execute(
                select(QuotaCounterRow.current_count).where(QuotaCounterRow.scope_id == scope_id)
            ).scalar_one_or_none()
            return int(value or 0)

        return _run_write(self._session_factory, "quota_decrement", _apply)

    def reset(self, scope_id: str) -> None:
        def _apply(session: Session) -> None:
            session.execute(
                update(QuotaCounterRow)
                .where(QuotaCounterRow.scope_id == scope_id)
                .values(current_count=0)
            )

        _run_write(self._session_factory, "quota_reset", _apply)
