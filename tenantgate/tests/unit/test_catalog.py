from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.errors import NotFoundError, ValidationError
from tenantgate.domain.entitlements import FeatureCategory, FeatureDefinition
from tenantgate.services.catalog import (
    DEFAULT_FEATURES,
    FeatureCatalogRegistry,
    InMemoryFeatureCatalog,
    SqlFeatureCatalog,
    feature_for_path,
    validate_feature_key,
)


@pytest.fixture(params=["memory", "sql"])
def catalog(request, sqlite_session_factory: sessionmaker[Session]) -> FeatureCatalogRegistry:
    if request.param == "sql":
        return SqlFeatureCatalog(sqlite_session_factory)
    return InMemoryFeatureCatalog()


def test_seed_defaults_is_idempotent(catalog: FeatureCatalogRegistry) -> None:
    assert catalog.seed_defaults() == len(DEFAULT_FEATURES)
    assert catalog.seed_defaults() == 0
    assert len(catalog.list_definitions()) == len(DEFAULT_FEATURES)
    assert catalog.is_known("notifications.sms")


def test_register_rejects_duplicates(catalog: FeatureCatalogRegistry) -> None:
    definition = FeatureDefinition(key="laundry", display_name="Laundry", category=FeatureCategory.OPERATIONS)
    stored = catalog.register(definition)
    assert stored.key == "laundry"
    with pytest.raises(ValidationError):
        catalog.register(definition)


def test_register_rejects_malformed_keys(catalog: FeatureCatalogRegistry) -> None:
    with pytest.raises(ValidationError):
        catalog.register(
            FeatureDefinition(key="9lives", display_name="Bad", category=FeatureCategory.CORE)
        )


def test_inactive_definitions_remain_known(catalog: FeatureCatalogRegistry) -> None:
    catalog.seed_defaults()
    updated = catalog.update("proration", is_active=False, display_name="Prorated Rent")
    assert updated.is_active is False
    assert updated.display_name == "Prorated Rent"
    assert catalog.is_known("proration")
    active_keys = {item.key for item in catalog.list_definitions(active_only=True)}
    assert "proration" not in active_keys


def test_update_unknown_key(catalog: FeatureCatalogRegistry) -> None:
    with pytest.raises(NotFoundError):
        catalog.update("teleportation", is_active=True)
    with pytest.raises(NotFoundError):
        catalog.definition_of("teleportation")


def test_list_filters_by_category(catalog: FeatureCatalogRegistry) -> None:
    catalog.seed_defaults()
    payments = catalog.list_definitions(category=FeatureCategory.PAYMENTS)
    assert [item.key for item in payments] == [
        "extraPayments",
        "onlinePayments",
        "rentPayments",
        "securityDeposits",
    ]


def test_validate_feature_key_strips_whitespace() -> None:
    assert validate_feature_key("  reports ") == "reports"
    with pytest.raises(ValidationError):
        validate_feature_key("")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/buildings", "buildings"),
        ("/rooms/12/beds", "rooms"),
        ("/residents", None),
        ("/residents/42", "residents"),
        ("/payments/rent", "rentPayments"),
        ("/payments/extra/3", "extraPayments"),
        ("/payments/security-deposits", "securityDeposits"),
        ("/payments/refunds", None),
        ("/reports/dashboard", None),
        ("/reports/monthly", "reports"),
        ("/admin/tenants/t1/features", None),
        ("/gate-passes?status=open", "gatePasses"),
        ("/users/", "userManagement"),
        ("/", None),
        ("/unknown", None),
    ],
)
def test_feature_for_path(path: str, expected: str | None) -> None:
    assert feature_for_path(path) == expected
