from __future__ import annotations

from tenantgate.domain.entitlements import Channel, NotificationEvent, TriState
from tenantgate.persistence.stores import InMemoryTenantEntitlementStore, InMemoryUserPermissionStore


def test_tenant_reads_do_not_share_state_with_store() -> None:
    store = InMemoryTenantEntitlementStore()
    seeded = store.seed_features("t1", ["rooms"], plan_id="starter")
    seeded.features["reports"] = True

    record = store.get("t1")
    assert record is not None
    record.features["beds"] = True

    assert store.get("t1").features == {"rooms": True}


def test_user_reads_do_not_share_state_with_store() -> None:
    store = InMemoryUserPermissionStore()
    store.set_feature_overrides("t1", "u1", {"rooms": TriState.DISABLED})
    written = store.set_event_channel_settings(
        "t1", "u1", {(NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True}
    )
    written.event_channel_settings[(NotificationEvent.PAYMENT_DUE, Channel.SMS)] = True

    record = store.get("t1", "u1")
    assert record is not None
    record.feature_overrides["reports"] = TriState.ENABLED

    fresh = store.get("t1", "u1")
    assert fresh.feature_overrides == {"rooms": TriState.DISABLED}
    assert fresh.event_channel_settings == {(NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True}
