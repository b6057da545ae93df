from __future__ import annotations

from dataclasses import replace
import threading
from typing import Iterable, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.errors import NotFoundError, ValidationError
from tenantgate.domain.entitlements import Plan
from tenantgate.domain.models import PlanFeatureRow, PlanRow


BILLING_CYCLES = frozenset({"monthly", "quarterly", "yearly"})


class PlanCatalog(Protocol):
    def get_plan(self, plan_id: str) -> Plan:
        ...

    def get_feature_keys(self, plan_id: str) -> frozenset[str]:
        ...

    def list_plans(self, *, active_only: bool = False) -> list[Plan]:
        ...

    def default_plan(self) -> Plan | None:
        ...

    def save_plan(self, plan: Plan) -> Plan:
        ...

    def set_default(self, plan_id: str) -> Plan:
        ...


def _validate_plan(plan: Plan) -> Plan:
    if not plan.id or not plan.id.strip():
        raise ValidationError("Plan id is required")
    if plan.billing_cycle not in BILLING_CYCLES:
        raise ValidationError(
            f"Unsupported billing cycle: {plan.billing_cycle}", billing_cycle=plan.billing_cycle
        )
    if plan.price < 0:
        raise ValidationError("Plan price must be non-negative", price=plan.price)
    return replace(plan, feature_keys=frozenset(plan.feature_keys))


def _unknown_plan(plan_id: str) -> NotFoundError:
    return NotFoundError(f"Unknown plan: {plan_id}", plan_id=plan_id)


class InMemoryPlanCatalog:
    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._plans: dict[str, Plan] = {}
        self._lock = threading.Lock()
        for plan in plans:
            self.save_plan(plan)

    def get_plan(self, plan_id: str) -> Plan:
        with self._lock:
            plan = self._plans.get(plan_id)
        if plan is None:
            raise _unknown_plan(plan_id)
        return plan

    def get_feature_keys(self, plan_id: str) -> frozenset[str]:
        return self.get_plan(plan_id).feature_keys

    def list_plans(self, *, active_only: bool = False) -> list[Plan]:
        with self._lock:
            plans = list(self._plans.values())
        return sorted(
            (plan for plan in plans if plan.is_active or not active_only),
            key=lambda plan: (plan.price, plan.id),
        )

    def default_plan(self) -> Plan | None:
        with self._lock:
            for plan in self._plans.values():
                if plan.is_default and plan.is_active:
                    return plan
        return None

    def save_plan(self, plan: Plan) -> Plan:
        validated = _validate_plan(plan)
        with self._lock:
            if validated.is_default:
                # Only one plan can be the default at a time.
                self._plans = {
                    key: replace(existing, is_default=False) for key, existing in self._plans.items()
                }
            self._plans[validated.id] = validated
        return validated

    def set_default(self, plan_id: str) -> Plan:
        plan = self.get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError("Inactive plans cannot be the default", plan_id=plan_id)
        return self.save_plan(replace(plan, is_default=True))


def _row_to_plan(row: PlanRow, feature_keys: Iterable[str]) -> Plan:
    return Plan(
        id=row.id,
        slug=row.slug,
        name=row.name,
        price=float(row.price),
        billing_cycle=row.billing_cycle,
        feature_keys=frozenset(feature_keys),
        is_active=bool(row.is_active),
        is_default=bool(row.is_default),
    )


def _load_plan(session: Session, plan_id: str) -> Plan | None:
    row = session.get(PlanRow, plan_id)
    if row is None:
        return None
    keys = session.execute(
        select(PlanFeatureRow.feature_key).where(PlanFeatureRow.plan_id == plan_id)
    ).scalars()
    return _row_to_plan(row, keys)


class SqlPlanCatalog:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_plan(self, plan_id: str) -> Plan:
        with self._session_factory() as session:
            plan = _load_plan(session, plan_id)
        if plan is None:
            raise _unknown_plan(plan_id)
        return plan

    def get_feature_keys(self, plan_id: str) -> frozenset[str]:
        return self.get_plan(plan_id).feature_keys

    def list_plans(self, *, active_only: bool = False) -> list[Plan]:
        query = select(PlanRow.id)
        if active_only:
            query = query.where(PlanRow.is_active.is_(True))
        with self._session_factory() as session:
            plan_ids = list(session.execute(query).scalars())
            plans = [plan for plan in (_load_plan(session, plan_id) for plan_id in plan_ids) if plan]
        return sorted(plans, key=lambda plan: (plan.price, plan.id))

    def default_plan(self) -> Plan | None:
        with self._session_factory() as session:
            plan_id = session.execute(
                select(PlanRow.id).where(PlanRow.is_default.is_(True), PlanRow.is_active.is_(True))
            ).scalars().first()
            if plan_id is None:
                return None
            return _load_plan(session, plan_id)

    def save_plan(self, plan: Plan) -> Plan:
        validated = _validate_plan(plan)
        with self._session_factory() as session:
            if validated.is_default:
                session.execute(
                    update(PlanRow).where(PlanRow.id != validated.id).values(is_default=False)
                )
            row = session.get(PlanRow, validated.id)
            if row is None:
                row = PlanRow(id=validated.id)
                session.add(row)
            row.slug = validated.slug
            row.name = validated.name
            row.price = validated.price
            row.billing_cycle = validated.billing_cycle
            row.is_active = validated.is_active
            row.is_default = validated.is_default
            session.flush()
            existing_keys = set(
                session.execute(
                    select(PlanFeatureRow.feature_key).where(PlanFeatureRow.plan_id == validated.id)
                ).scalars()
            )
            for key in existing_keys - validated.feature_keys:
                stale = session.get(PlanFeatureRow, (validated.id, key))
                if stale is not None:
                    session.delete(stale)
            for key in validated.feature_keys - existing_keys:
                session.add(PlanFeatureRow(plan_id=validated.id, feature_key=key))
            session.commit()
        return validated

    def set_default(self, plan_id: str) -> Plan:
        plan = self.get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError("Inactive plans cannot be the default", plan_id=plan_id)
        return self.save_plan(replace(plan, is_default=True))
