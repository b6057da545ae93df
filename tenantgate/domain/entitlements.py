from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TriState(str, Enum):
    # Three-valued override; UNSET inherits from the layer above.
    UNSET = "unset"
    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def from_optional(cls, value: bool | None) -> "TriState":
        if value is None:
            return cls.UNSET
        return cls.ENABLED if value else cls.DISABLED

    @classmethod
    def coerce(cls, value: "TriState | bool | str | None") -> "TriState":
        # Accept API/storage representations and normalize to the enum.
        if isinstance(value, TriState):
            return value
        if value is None or isinstance(value, bool):
            return cls.from_optional(value)
        return cls(str(value).lower())

    def as_optional(self) -> bool | None:
        if self is TriState.UNSET:
            return None
        return self is TriState.ENABLED


class FeatureCategory(str, Enum):
    CORE = "core"
    PAYMENTS = "payments"
    OPERATIONS = "operations"
    MANAGEMENT = "management"
    ANALYTICS = "analytics"
    ADVANCED = "advanced"


CATEGORY_LABELS: dict[FeatureCategory, str] = {
    FeatureCategory.CORE: "Core Features",
    FeatureCategory.PAYMENTS: "Payment Features",
    FeatureCategory.OPERATIONS: "Operations",
    FeatureCategory.MANAGEMENT: "Management",
    FeatureCategory.ANALYTICS: "Analytics & Reports",
    FeatureCategory.ADVANCED: "Advanced Features",
}


class Channel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"

    @property
    def feature_key(self) -> str:
        # Plan capability for a channel is carried as a regular feature key.
        return f"notifications.{self.value.lower()}"


class NotificationEvent(str, Enum):
    RESIDENT_CREATED = "resident.created"
    RESIDENT_ASSIGNED_ROOM = "resident.assigned_room"
    PAYMENT_DUE = "payment.due"
    PAYMENT_PAID = "payment.paid"
    SECURITY_DEPOSIT_RECEIVED = "security_deposit.received"
    RESIDENT_VACATED = "resident.vacated"


class Role(str, Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    STAFF = "STAFF"


# Roles allowed to edit other users' permission records.
PERMISSION_EDITOR_ROLES = frozenset({Role.OWNER, Role.MANAGER})

EventChannelKey = tuple[NotificationEvent, Channel]


@dataclass(frozen=True)
class FeatureDefinition:
    # Catalog entry; display metadata only, never consulted for authorization.
    key: str
    display_name: str
    category: FeatureCategory
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Plan:
    # Read-only subscription plan as supplied by the plan catalog.
    id: str
    name: str
    feature_keys: frozenset[str]
    slug: str | None = None
    price: float = 0.0
    billing_cycle: str = "monthly"
    is_active: bool = True
    is_default: bool = False


@dataclass(frozen=True)
class NotificationOverrides:
    email_allowed: TriState = TriState.UNSET
    sms_allowed: TriState = TriState.UNSET
    # None means unlimited monthly SMS.
    monthly_sms_limit: int | None = None

    def for_channel(self, channel: Channel) -> TriState:
        if channel is Channel.EMAIL:
            return self.email_allowed
        return self.sms_allowed


@dataclass(frozen=True)
class TenantEntitlement:
    # Absent feature keys are not granted.
    tenant_id: str
    features: dict[str, bool] = field(default_factory=dict)
    notification: NotificationOverrides = field(default_factory=NotificationOverrides)
    plan_id: str | None = None

    def has_feature(self, key: str) -> bool:
        return self.features.get(key) is True


@dataclass(frozen=True)
class UserPermission:
    # Absent feature overrides inherit the tenant grant; absent event settings are off.
    tenant_id: str
    user_id: str
    feature_overrides: dict[str, TriState] = field(default_factory=dict)
    event_channel_settings: dict[EventChannelKey, bool] = field(default_factory=dict)

    @classmethod
    def empty(cls, tenant_id: str, user_id: str) -> "UserPermission":
        return cls(tenant_id=tenant_id, user_id=user_id)

    def override_for(self, key: str) -> TriState:
        return self.feature_overrides.get(key, TriState.UNSET)

    def event_setting(self, event: NotificationEvent, channel: Channel) -> bool:
        return self.event_channel_settings.get((event, channel), False)


@dataclass(frozen=True)
class QuotaDecision:
    # Outcome of a bounded-counter check; count is the post-operation value.
    scope_id: str
    allowed: bool
    count: int
    limit: int | None


@dataclass(frozen=True)
class EntitlementEvent:
    # Emitted after every committed mutation for audit/notification subscribers.
    event_type: str
    tenant_id: str
    actor_id: str | None = None
    subject_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
