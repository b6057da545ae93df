from __future__ import annotations

import pytest

from tenantgate.core.errors import (
    EntitlementExceededError,
    NotFoundError,
    SelfModificationDeniedError,
    ValidationError,
)
from tenantgate.domain.entitlements import Channel, NotificationEvent, Plan, TriState
from tenantgate.persistence.stores import InMemoryTenantEntitlementStore, InMemoryUserPermissionStore
from tenantgate.services.catalog import DEFAULT_FEATURES, InMemoryFeatureCatalog
from tenantgate.services.entitlements import EntitlementService
from tenantgate.services.events import EventBus, RecordingSubscriber
from tenantgate.services.mutations import (
    EVENT_PLAN_ASSIGNED,
    EVENT_USER_EVENT_CHANNEL_UPDATED,
    EVENT_USER_FEATURES_UPDATED,
    PermissionMutationGuard,
)


def _guard() -> tuple[PermissionMutationGuard, EventBus, RecordingSubscriber]:
    events = EventBus()
    recorder = RecordingSubscriber()
    events.subscribe(recorder)
    guard = PermissionMutationGuard(
        catalog=InMemoryFeatureCatalog(DEFAULT_FEATURES),
        tenants=InMemoryTenantEntitlementStore(),
        users=InMemoryUserPermissionStore(),
        events=events,
    )
    return guard, events, recorder


def test_assign_plan_enables_plan_features(service: EntitlementService) -> None:
    record = service.assign_plan("t1", "starter", actor_id="admin")
    assert record.plan_id == "starter"
    assert record.features == {
        "buildings": True,
        "rooms": True,
        "residents": True,
        "notifications.email": True,
    }
    assert service.get_resolved_features("t1", "u1")["reports"] is False


def test_plan_downgrade_keeps_existing_grants(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    record = service.assign_plan("t1", "starter")
    assert record.plan_id == "starter"
    assert record.features["reports"] is True
    assert record.features["notifications.sms"] is True


def test_assign_plan_does_not_re_enable_unrelated_admin_disables(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    service.set_tenant_feature("t1", "reports", False)
    record = service.assign_plan("t1", "starter")
    assert record.features["reports"] is False


def test_assign_inactive_plan_is_rejected(service: EntitlementService) -> None:
    service.plans.save_plan(Plan(id="legacy", name="Legacy", feature_keys=frozenset(), is_active=False))
    with pytest.raises(ValidationError):
        service.assign_plan("t1", "legacy")
    assert service.tenants.get("t1") is None


def test_assign_unknown_plan_is_not_found(service: EntitlementService) -> None:
    with pytest.raises(NotFoundError):
        service.assign_plan("t1", "enterprise")


def test_assign_default_plan(service: EntitlementService) -> None:
    record = service.assign_default_plan("t1")
    assert record.plan_id == "starter"


def test_set_tenant_feature_is_idempotent(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    first = service.set_tenant_feature("t1", "reports", True)
    second = service.set_tenant_feature("t1", "reports", True)
    assert first.features == second.features


def test_set_tenant_feature_rejects_unknown_key(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(ValidationError) as excinfo:
        service.set_tenant_feature("t1", "teleportation", True)
    assert excinfo.value.details["feature_key"] == "teleportation"


def test_set_tenant_features_requires_tenant(service: EntitlementService) -> None:
    with pytest.raises(NotFoundError):
        service.set_tenant_features("missing", {"reports": True})


def test_set_tenant_features_rejects_empty_update(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(ValidationError):
        service.set_tenant_features("t1", {})


def test_self_modification_is_always_denied(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    for value in (TriState.ENABLED, TriState.DISABLED, None):
        with pytest.raises(SelfModificationDeniedError):
            service.set_user_feature("u1", "t1", "u1", "reports", value)
    assert service.users.get("t1", "u1") is None


def test_self_check_runs_before_key_validation(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    with pytest.raises(SelfModificationDeniedError):
        service.set_user_feature("u1", "t1", "u1", "teleportation", True)


def test_key_validation_runs_before_containment(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(ValidationError):
        service.set_user_features("owner", "t1", "u2", {"teleportation": True, "reports": True})


def test_containment_rejects_whole_bulk_update(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(EntitlementExceededError) as excinfo:
        service.set_user_features(
            "owner", "t1", "u2", {"rooms": False, "reports": True, "insights": False}
        )
    assert excinfo.value.details["feature_keys"] == ["insights", "reports"]
    # Nothing from the rejected batch was written.
    assert service.users.get("t1", "u2") is None


def test_user_override_round_trip(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    service.set_user_feature("owner", "t1", "u2", "reports", False)
    assert service.get_resolved_features("t1", "u2")["reports"] is False

    service.set_user_feature("owner", "t1", "u2", "reports", None)
    view = service.get_user_permissions("t1", "u2")
    assert "reports" not in view.overrides
    assert view.resolved["reports"] is True


def test_user_override_requires_tenant_record(service: EntitlementService) -> None:
    with pytest.raises(NotFoundError):
        service.set_user_feature("owner", "missing", "u2", "reports", True)


def test_event_channel_setting_needs_allowed_channel(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(EntitlementExceededError):
        service.set_user_event_channel_setting(
            "owner", "t1", "u2", NotificationEvent.PAYMENT_DUE, Channel.SMS, True
        )
    # Disabling is always accepted.
    record = service.set_user_event_channel_setting(
        "owner", "t1", "u2", NotificationEvent.PAYMENT_DUE, Channel.SMS, False
    )
    assert record.event_setting(NotificationEvent.PAYMENT_DUE, Channel.SMS) is False


def test_event_channel_setting_self_modification(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    with pytest.raises(SelfModificationDeniedError):
        service.set_user_event_channel_setting(
            "u2", "t1", "u2", NotificationEvent.PAYMENT_DUE, Channel.EMAIL, True
        )


def test_admin_channel_disable_masks_user_settings(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    service.set_user_event_channel_setting(
        "owner", "t1", "u2", NotificationEvent.PAYMENT_PAID, Channel.SMS, True
    )
    assert service.get_notification_resolution("t1", "u2", NotificationEvent.PAYMENT_PAID, Channel.SMS)

    service.set_tenant_notification_override("t1", Channel.SMS, TriState.DISABLED)
    assert not service.get_notification_resolution(
        "t1", "u2", NotificationEvent.PAYMENT_PAID, Channel.SMS
    )


def test_negative_sms_limit_is_rejected(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    with pytest.raises(ValidationError):
        service.set_monthly_sms_limit("t1", -1)


def test_successful_writes_publish_events() -> None:
    guard, _events, recorder = _guard()
    guard.assign_plan("t1", Plan(id="basic", name="Basic", feature_keys=frozenset({"reports"})), actor_id="a")
    guard.set_user_feature("owner", "t1", "u2", "reports", True)

    event_types = [event.event_type for event in recorder.events("t1")]
    assert event_types == [EVENT_PLAN_ASSIGNED, EVENT_USER_FEATURES_UPDATED]
    user_event = recorder.events("t1")[-1]
    assert user_event.actor_id == "owner"
    assert user_event.subject_id == "u2"
    assert user_event.metadata == {"overrides": {"reports": "enabled"}}


def test_rejected_writes_publish_nothing() -> None:
    guard, _events, recorder = _guard()
    guard.assign_plan("t1", Plan(id="basic", name="Basic", feature_keys=frozenset({"rooms"})))
    with pytest.raises(EntitlementExceededError):
        guard.set_user_feature("owner", "t1", "u2", "reports", True)
    assert len(recorder.events()) == 1


def test_failing_subscriber_does_not_abort_write() -> None:
    guard, _events, recorder = _guard()

    def _broken(_event) -> None:
        raise RuntimeError("subscriber down")

    _events.subscribe(_broken)
    record = guard.assign_plan("t1", Plan(id="basic", name="Basic", feature_keys=frozenset({"rooms"})))
    assert record.features == {"rooms": True}
    assert len(recorder.events()) == 1


def test_plan_with_unknown_keys_is_not_seeded(service: EntitlementService) -> None:
    service.plans.save_plan(
        Plan(id="odd", name="Odd", feature_keys=frozenset({"rooms", "bogusKey", "alsoBogus"}))
    )
    with pytest.raises(ValidationError) as excinfo:
        service.assign_plan("t9", "odd")
    assert excinfo.value.details["feature_keys"] == ["alsoBogus", "bogusKey"]
    assert service.tenants.get("t9") is None


def test_saving_plan_checks_keys_against_catalog(service: EntitlementService) -> None:
    with pytest.raises(ValidationError):
        service.save_plan(Plan(id="odd", name="Odd", feature_keys=frozenset({"bogusKey"})))
    with pytest.raises(NotFoundError):
        service.plans.get_plan("odd")

    saved = service.save_plan(Plan(id="lean", name="Lean", feature_keys=frozenset({"rooms"})))
    assert saved.feature_keys == frozenset({"rooms"})


def test_bulk_event_channel_settings_are_all_or_nothing(service: EntitlementService) -> None:
    service.assign_plan("t1", "starter")
    with pytest.raises(EntitlementExceededError) as excinfo:
        service.set_user_event_channel_settings(
            "owner",
            "t1",
            "u2",
            {
                (NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True,
                (NotificationEvent.PAYMENT_DUE, Channel.SMS): True,
            },
        )
    assert excinfo.value.details["channels"] == ["SMS"]
    assert service.users.get("t1", "u2") is None


def test_bulk_event_channel_settings_save_whole_matrix(service: EntitlementService) -> None:
    service.assign_plan("t1", "pro")
    record = service.set_user_event_channel_settings(
        "owner",
        "t1",
        "u2",
        {
            (NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True,
            (NotificationEvent.PAYMENT_DUE, Channel.SMS): True,
            (NotificationEvent.RESIDENT_CREATED, Channel.SMS): False,
        },
    )
    assert record.event_setting(NotificationEvent.PAYMENT_DUE, Channel.SMS) is True
    matrix = service.get_event_channel_matrix("t1", "u2")
    assert matrix[NotificationEvent.PAYMENT_DUE] == {Channel.EMAIL: True, Channel.SMS: True}
    assert matrix[NotificationEvent.RESIDENT_CREATED][Channel.SMS] is False


def test_bulk_event_channel_self_check_runs_first(service: EntitlementService) -> None:
    # Self-modification wins even when the tenant record is missing.
    with pytest.raises(SelfModificationDeniedError):
        service.set_user_event_channel_settings(
            "u2", "missing", "u2", {(NotificationEvent.PAYMENT_DUE, Channel.SMS): True}
        )
    with pytest.raises(ValidationError):
        service.set_user_event_channel_settings("owner", "missing", "u2", {})


def test_bulk_event_channel_write_publishes_one_event() -> None:
    guard, _events, recorder = _guard()
    guard.assign_plan("t1", Plan(id="basic", name="Basic", feature_keys=frozenset({"rooms", "notifications.email"})))
    guard.set_user_event_channel_settings(
        "owner",
        "t1",
        "u2",
        {
            (NotificationEvent.PAYMENT_DUE, Channel.EMAIL): True,
            (NotificationEvent.PAYMENT_PAID, Channel.EMAIL): False,
        },
    )

    event = recorder.events("t1")[-1]
    assert event.event_type == EVENT_USER_EVENT_CHANNEL_UPDATED
    assert event.metadata == {
        "settings": [
            {"event": "payment.due", "channel": "EMAIL", "enabled": True},
            {"event": "payment.paid", "channel": "EMAIL", "enabled": False},
        ]
    }
