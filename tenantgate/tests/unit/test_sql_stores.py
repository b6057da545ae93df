from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.errors import NotFoundError
from tenantgate.domain.entitlements import Channel, NotificationEvent, TriState
from tenantgate.persistence.sql import SqlTenantEntitlementStore, SqlUserPermissionStore


def test_tenant_record_is_created_by_seeding(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlTenantEntitlementStore(sqlite_session_factory)
    assert store.get("t1") is None

    record = store.seed_features("t1", ["rooms", "beds"], plan_id="basic")
    assert record.plan_id == "basic"
    assert record.features == {"rooms": True, "beds": True}
    assert record.notification.email_allowed is TriState.UNSET
    assert record.notification.monthly_sms_limit is None


def test_seeding_never_disables(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlTenantEntitlementStore(sqlite_session_factory)
    store.seed_features("t1", ["rooms", "reports"], plan_id="plus")
    store.set_features("t1", {"reports": False})

    record = store.seed_features("t1", ["rooms"], plan_id="basic")
    assert record.plan_id == "basic"
    assert record.features == {"rooms": True, "reports": False}


def test_tenant_setters_require_record(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlTenantEntitlementStore(sqlite_session_factory)
    with pytest.raises(NotFoundError):
        store.set_features("t1", {"rooms": True})
    with pytest.raises(NotFoundError):
        store.set_channel_override("t1", Channel.SMS, TriState.DISABLED)
    with pytest.raises(NotFoundError):
        store.set_monthly_sms_limit("t1", 10)


def test_notification_overrides_persist(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlTenantEntitlementStore(sqlite_session_factory)
    store.seed_features("t1", ["notifications.sms"], plan_id=None)
    store.set_channel_override("t1", Channel.SMS, TriState.DISABLED)
    store.set_monthly_sms_limit("t1", 100)

    record = store.get("t1")
    assert record is not None
    assert record.notification.sms_allowed is TriState.DISABLED
    assert record.notification.email_allowed is TriState.UNSET
    assert record.notification.monthly_sms_limit == 100


def test_concurrent_seeding_creates_one_record(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlTenantEntitlementStore(sqlite_session_factory)
    with ThreadPoolExecutor(max_workers=4) as executor:
        futures = [
            executor.submit(store.seed_features, "t1", [f"feature{index}"], plan_id="basic")
            for index in range(4)
        ]
        for future in futures:
            future.result()

    record = store.get("t1")
    assert record is not None
    assert record.features == {f"feature{index}": True for index in range(4)}


def test_user_overrides_round_trip(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlUserPermissionStore(sqlite_session_factory)
    assert store.get("t1", "u1") is None

    store.set_feature_overrides("t1", "u1", {"rooms": TriState.DISABLED, "beds": TriState.ENABLED})
    record = store.set_feature_overrides("t1", "u1", {"rooms": TriState.UNSET})

    assert record.feature_overrides == {"beds": TriState.ENABLED}
    assert record.override_for("rooms") is TriState.UNSET


def test_event_channel_settings_round_trip(sqlite_session_factory: sessionmaker[Session]) -> None:
    store = SqlUserPermissionStore(sqlite_session_factory)
    store.set_event_channel_settings("t1", "u1", {(NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True})
    store.set_event_channel_settings(
        "t1",
        "u1",
        {
            (NotificationEvent.PAYMENT_DUE, Channel.EMAIL): False,
            (NotificationEvent.RESIDENT_CREATED, Channel.SMS): True,
        },
    )

    record = store.get("t1", "u1")
    assert record is not None
    assert record.event_channel_settings == {
        (NotificationEvent.PAYMENT_DUE, Channel.EMAIL): False,
        (NotificationEvent.RESIDENT_CREATED, Channel.SMS): True,
    }
    assert record.event_setting(NotificationEvent.PAYMENT_PAID, Channel.EMAIL) is False
    # Records are scoped to the tenant.
    assert store.get("t2", "u1") is None
