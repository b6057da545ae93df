from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PlanRow(Base):
    __tablename__ = "plans"

    # Plan catalog entries; feature grants live in plan_features.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    slug: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String)
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String, default="monthly", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PlanFeatureRow(Base):
    __tablename__ = "plan_features"

    plan_id: Mapped[str] = mapped_column(String, ForeignKey("plans.id"), primary_key=True)
    feature_key: Mapped[str] = mapped_column(String, primary_key=True)


class FeatureDefinitionRow(Base):
    __tablename__ = "feature_definitions"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    display_name: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Deactivation hides a feature from pickers without revoking tenant grants.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TenantEntitlementRow(Base):
    __tablename__ = "tenant_entitlements"

    # One row per tenant, created on first plan assignment and never deleted.
    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    plan_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Tri-state channel overrides stored as unset|enabled|disabled.
    email_allowed: Mapped[str] = mapped_column(String, default="unset", nullable=False)
    sms_allowed: Mapped[str] = mapped_column(String, default="unset", nullable=False)
    monthly_sms_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TenantFeatureRow(Base):
    __tablename__ = "tenant_features"

    tenant_id: Mapped[str] = mapped_column(
        String, ForeignKey("tenant_entitlements.tenant_id"), primary_key=True
    )
    feature_key: Mapped[str] = mapped_column(String, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)


class UserFeatureOverrideRow(Base):
    __tablename__ = "user_feature_overrides"

    # Only enabled|disabled are persisted; an unset override is a missing row.
    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    feature_key: Mapped[str] = mapped_column(String, primary_key=True)
    state: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UserEventChannelSettingRow(Base):
    __tablename__ = "user_event_channel_settings"

    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    event: Mapped[str] = mapped_column(String, primary_key=True)
    channel: Mapped[str] = mapped_column(String, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class QuotaCounterRow(Base):
    __tablename__ = "quota_counters"

    # Mutated only through conditional updates so current_count never passes the caller's max.
    scope_id: Mapped[str] = mapped_column(String, primary_key=True)
    current_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
