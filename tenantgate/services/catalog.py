from __future__ import annotations

from dataclasses import replace
import logging
import re
import threading
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.errors import NotFoundError, ValidationError
from tenantgate.domain.entitlements import Channel, FeatureCategory, FeatureDefinition
from tenantgate.domain.models import FeatureDefinitionRow


logger = logging.getLogger(__name__)

_FEATURE_KEY_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*$")


def _definition(key: str, name: str, category: FeatureCategory, description: str) -> FeatureDefinition:
    return FeatureDefinition(key=key, display_name=name, category=category, description=description)


# Product catalog seeded into new deployments.
DEFAULT_FEATURES: tuple[FeatureDefinition, ...] = (
    _definition("buildings", "Buildings", FeatureCategory.CORE, "Manage buildings and properties"),
    _definition("rooms", "Rooms", FeatureCategory.CORE, "Manage rooms and room types"),
    _definition("beds", "Beds", FeatureCategory.CORE, "Manage bed assignments and availability"),
    _definition("residents", "Residents", FeatureCategory.CORE, "Manage resident information and check-ins"),
    _definition("rentPayments", "Rent Payments", FeatureCategory.PAYMENTS, "Track monthly rent payments"),
    _definition("extraPayments", "Extra Payments", FeatureCategory.PAYMENTS, "Track additional payments and charges"),
    _definition(
        "securityDeposits",
        "Security Deposits",
        FeatureCategory.PAYMENTS,
        "Manage security deposit collection and refunds",
    ),
    _definition(
        "onlinePayments", "Online Payments", FeatureCategory.PAYMENTS, "Enable online payment gateway integration"
    ),
    _definition("complaints", "Complaints", FeatureCategory.OPERATIONS, "Track and manage resident complaints"),
    _definition("visitors", "Visitors", FeatureCategory.OPERATIONS, "Manage visitor logs and check-ins"),
    _definition("gatePasses", "Gate Passes", FeatureCategory.OPERATIONS, "Issue and track gate passes"),
    _definition("notices", "Notices", FeatureCategory.OPERATIONS, "Create and manage announcements"),
    _definition(
        "residentPortal",
        "Resident Portal",
        FeatureCategory.OPERATIONS,
        "Allow residents to access their own data via mobile OTP login",
    ),
    _definition("staff", "Staff Management", FeatureCategory.MANAGEMENT, "Manage staff members and roles"),
    _definition("assets", "Asset Tracking", FeatureCategory.MANAGEMENT, "Track and manage assets"),
    _definition(
        "userManagement", "User Management", FeatureCategory.MANAGEMENT, "Create and manage users within the tenant"
    ),
    _definition("settings", "Settings", FeatureCategory.MANAGEMENT, "Access tenant settings and configuration"),
    _definition("reports", "Reports", FeatureCategory.ANALYTICS, "Generate and view reports"),
    _definition("insights", "Insights", FeatureCategory.ANALYTICS, "View analytics and business insights"),
    _definition("exportData", "Export Data", FeatureCategory.ANALYTICS, "Export data to CSV/Excel"),
    _definition("activityLog", "Activity Log", FeatureCategory.ADVANCED, "View system activity timeline"),
    _definition("auditLog", "Audit Log", FeatureCategory.ADVANCED, "View detailed audit trail"),
    _definition("savedFilters", "Saved Filters", FeatureCategory.ADVANCED, "Save and reuse filter configurations"),
    _definition("customTags", "Custom Tags", FeatureCategory.ADVANCED, "Add custom tags to residents and payments"),
    _definition("bulkActions", "Bulk Actions", FeatureCategory.ADVANCED, "Perform bulk operations on multiple records"),
    _definition("proration", "Proration", FeatureCategory.ADVANCED, "Calculate prorated rent for partial months"),
    _definition(
        Channel.EMAIL.feature_key, "Email Notifications", FeatureCategory.ADVANCED, "Send event notifications by email"
    ),
    _definition(
        Channel.SMS.feature_key, "SMS Notifications", FeatureCategory.ADVANCED, "Send event notifications by SMS"
    ),
)


class FeatureCatalogRegistry(Protocol):
    def definition_of(self, key: str) -> FeatureDefinition:
        ...

    def is_known(self, key: str) -> bool:
        ...

    def register(self, definition: FeatureDefinition) -> FeatureDefinition:
        ...

    def update(
        self,
        key: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> FeatureDefinition:
        ...

    def list_definitions(
        self, *, category: FeatureCategory | None = None, active_only: bool = False
    ) -> list[FeatureDefinition]:
        ...

    def seed_defaults(self) -> int:
        ...


def validate_feature_key(key: str) -> str:
    normalized = (key or "").strip()
    if not _FEATURE_KEY_PATTERN.match(normalized):
        raise ValidationError(f"Invalid feature key: {key!r}", feature_key=key)
    return normalized


def _unknown_feature(key: str) -> NotFoundError:
    return NotFoundError(f"Unknown feature key: {key}", feature_key=key)


def _sorted(definitions: Iterable[FeatureDefinition]) -> list[FeatureDefinition]:
    order = {category: index for index, category in enumerate(FeatureCategory)}
    return sorted(definitions, key=lambda item: (order[item.category], item.key))


class InMemoryFeatureCatalog:
    def __init__(self, definitions: Iterable[FeatureDefinition] = ()) -> None:
        self._definitions: dict[str, FeatureDefinition] = {}
        self._lock = threading.Lock()
        for definition in definitions:
            self.register(definition)

    def definition_of(self, key: str) -> FeatureDefinition:
        with self._lock:
            definition = self._definitions.get(key)
        if definition is None:
            raise _unknown_feature(key)
        return definition

    def is_known(self, key: str) -> bool:
        # Inactive definitions still count as known keys.
        with self._lock:
            return key in self._definitions

    def register(self, definition: FeatureDefinition) -> FeatureDefinition:
        key = validate_feature_key(definition.key)
        with self._lock:
            if key in self._definitions:
                raise ValidationError(f"Feature key already exists: {key}", feature_key=key)
            stored = replace(definition, key=key)
            self._definitions[key] = stored
        return stored

    def update(
        self,
        key: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> FeatureDefinition:
        with self._lock:
            current = self._definitions.get(key)
            if current is None:
                raise _unknown_feature(key)
            updated = replace(
                current,
                display_name=display_name if display_name is not None else current.display_name,
                description=description if description is not None else current.description,
                is_active=is_active if is_active is not None else current.is_active,
            )
            self._definitions[key] = updated
        return updated

    def list_definitions(
        self, *, category: FeatureCategory | None = None, active_only: bool = False
    ) -> list[FeatureDefinition]:
        with self._lock:
            definitions = list(self._definitions.values())
        return _sorted(
            item
            for item in definitions
            if (category is None or item.category == category) and (not active_only or item.is_active)
        )

    def seed_defaults(self) -> int:
        inserted = 0
        with self._lock:
            for definition in DEFAULT_FEATURES:
                if definition.key not in self._definitions:
                    self._definitions[definition.key] = definition
                    inserted += 1
        if inserted:
            logger.info("feature_catalog_seeded inserted=%s", inserted)
        return inserted


def _row_to_definition(row: FeatureDefinitionRow) -> FeatureDefinition:
    return FeatureDefinition(
        key=row.key,
        display_name=row.display_name,
        category=FeatureCategory(row.category),
        description=row.description,
        is_active=bool(row.is_active),
    )


class SqlFeatureCatalog:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def definition_of(self, key: str) -> FeatureDefinition:
        with self._session_factory() as session:
            row = session.get(FeatureDefinitionRow, key)
            if row is None:
                raise _unknown_feature(key)
            return _row_to_definition(row)

    def is_known(self, key: str) -> bool:
        with self._session_factory() as session:
            return session.get(FeatureDefinitionRow, key) is not None

    def register(self, definition: FeatureDefinition) -> FeatureDefinition:
        key = validate_feature_key(definition.key)
        with self._session_factory() as session:
            if session.get(FeatureDefinitionRow, key) is not None:
                raise ValidationError(f"Feature key already exists: {key}", feature_key=key)
            row = FeatureDefinitionRow(
                key=key,
                display_name=definition.display_name,
                category=definition.category.value,
                description=definition.description,
                is_active=definition.is_active,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationError(f"Feature key already exists: {key}", feature_key=key) from exc
            return _row_to_definition(row)

    def update(
        self,
        key: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> FeatureDefinition:
        with self._session_factory() as session:
            row = session.get(FeatureDefinitionRow, key)
            if row is None:
                raise _unknown_feature(key)
            if display_name is not None:
                row.display_name = display_name
            if description is not None:
                row.description = description
            if is_active is not None:
                row.is_active = is_active
            session.commit()
            return _row_to_definition(row)

    def list_definitions(
        self, *, category: FeatureCategory | None = None, active_only: bool = False
    ) -> list[FeatureDefinition]:
        query = select(FeatureDefinitionRow)
        if category is not None:
            query = query.where(FeatureDefinitionRow.category == category.value)
        if active_only:
            query = query.where(FeatureDefinitionRow.is_active.is_(True))
        with self._session_factory() as session:
            rows = session.execute(query).scalars().all()
            return _sorted(_row_to_definition(row) for row in rows)

    def seed_defaults(self) -> int:
        with self._session_factory() as session:
            existing = set(session.execute(select(FeatureDefinitionRow.key)).scalars())
            missing = [item for item in DEFAULT_FEATURES if item.key not in existing]
            for definition in missing:
                session.add(
                    FeatureDefinitionRow(
                        key=definition.key,
                        display_name=definition.display_name,
                        category=definition.category.value,
                        description=definition.description,
                        is_active=definition.is_active,
                    )
                )
            try:
                session.commit()
            except IntegrityError:
                # Another process seeded concurrently; its rows are equivalent.
                session.rollback()
                logger.warning("feature_catalog_seed_conflict")
                return 0
        if missing:
            logger.info("feature_catalog_seeded inserted=%s", len(missing))
        return len(missing)


# Request paths gated by each feature, matched on whole path segments.
FEATURE_ROUTE_MAP: dict[str, tuple[str, ...]] = {
    "buildings": ("buildings",),
    "rooms": ("rooms",),
    "beds": ("beds",),
    "residents": ("residents",),
    "rentPayments": ("payments", "rent-payments"),
    "extraPayments": ("extra-payments",),
    "securityDeposits": ("security-deposits",),
    "onlinePayments": ("online-payments",),
    "complaints": ("complaints",),
    "visitors": ("visitors",),
    "gatePasses": ("gate-passes",),
    "notices": ("notices",),
    "staff": ("staff",),
    "assets": ("assets",),
    "userManagement": ("users",),
    "settings": ("settings",),
    "reports": ("reports",),
    "insights": ("insights",),
    "exportData": ("export",),
    "activityLog": ("activity", "activity-logs"),
    "auditLog": ("audit-logs",),
    "savedFilters": ("saved-filters",),
    "customTags": ("tags",),
    "bulkActions": ("bulk-actions",),
    "proration": ("proration",),
}

_PAYMENT_SUBROUTES: tuple[tuple[str, str], ...] = (
    ("extra", "extraPayments"),
    ("security-deposits", "securityDeposits"),
    ("rent", "rentPayments"),
)


def feature_for_path(path: str) -> str | None:
    """Return the feature key that gates a product API path, or None when ungated.

    Admin routes, the dashboard summary and the bare residents list (used by
    pickers across the product) are never gated. Sub-routes under
    ``/payments/`` resolve to the specific payment feature; unknown payment
    sub-routes are left to the handler.
    """
    normalized = (path or "").split("?", 1)[0].split("#", 1)[0].strip().rstrip("/")
    segments = [segment for segment in normalized.split("/") if segment]
    if not segments:
        return None
    if "admin" in segments:
        return None
    if "/reports/dashboard" in normalized:
        return None
    if segments == ["residents"]:
        return None
    if "payments" in segments:
        index = segments.index("payments")
        if index + 1 < len(segments):
            subroute = segments[index + 1]
            for prefix, feature_key in _PAYMENT_SUBROUTES:
                if subroute == prefix:
                    return feature_key
            return None
    segment_set = set(segments)
    for feature_key, routes in FEATURE_ROUTE_MAP.items():
        if segment_set.intersection(routes):
            return feature_key
    return None
