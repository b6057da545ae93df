from __future__ import annotations

from dataclasses import dataclass
import logging

from tenantgate.core.errors import QuotaExceededError, ValidationError
from tenantgate.domain.entitlements import QuotaDecision
from tenantgate.persistence.stores import QuotaCounterStore


logger = logging.getLogger(__name__)


def pin_scope(tenant_id: str, user_id: str) -> str:
    return f"pins:{tenant_id}:{user_id}"


def sms_scope(tenant_id: str) -> str:
    return f"sms:{tenant_id}"


@dataclass(frozen=True)
class QuotaSnapshot:
    # Unlimited scopes report limit/remaining as None.
    scope_id: str
    used: int
    limit: int | None
    remaining: int | None


class ResourceQuotaGuard:
    def __init__(self, store: QuotaCounterStore) -> None:
        self._store = store

    def try_increment(self, scope_id: str, max_count: int) -> QuotaDecision:
        if max_count < 0:
            raise ValidationError("Quota max must be non-negative", scope_id=scope_id, max=max_count)
        # The store performs the compare-and-increment; rejection leaves the counter untouched.
        new_count = self._store.try_increment(scope_id, max_count)
        if new_count is None:
            current = self._store.get(scope_id)
            logger.info("quota_rejected scope_id=%s max=%s current=%s", scope_id, max_count, current)
            return QuotaDecision(scope_id=scope_id, allowed=False, count=current, limit=max_count)
        return QuotaDecision(scope_id=scope_id, allowed=True, count=new_count, limit=max_count)

    def decrement(self, scope_id: str) -> int:
        return self._store.decrement(scope_id)

    def reset_scope(self, scope_id: str) -> None:
        self._store.reset(scope_id)
        logger.info("quota_scope_reset scope_id=%s", scope_id)

    def snapshot(self, scope_id: str, limit: int | None) -> QuotaSnapshot:
        used = self._store.get(scope_id)
        remaining = None if limit is None else max(limit - used, 0)
        return QuotaSnapshot(scope_id=scope_id, used=used, limit=limit, remaining=remaining)


def build_quota_error(decision: QuotaDecision, message: str) -> QuotaExceededError:
    return QuotaExceededError(
        message,
        scope_id=decision.scope_id,
        limit=decision.limit,
        used=decision.count,
    )
